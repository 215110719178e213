"""Turn the active triage filter into a reusable mail rule proposal.

What:
  Build a :class:`RuleDraft` (conditions plus one disposition) from the
  filter the user is currently triaging with.

Why:
  After archiving a noisy sender by hand, the natural follow-up is "do this
  automatically from now on". The draft captures exactly the constraints the
  user has been looking at so a rule editor can be pre-filled.

How:
  Copy the non-empty string constraints of the filter into the conditions
  mapping, map the chosen :class:`RuleAction` to its action flag and derive a
  readable name from the strongest constraint.

Interfaces:
  :class:`RuleAction`, :class:`RuleDraft`, :func:`draft_rule`.

Invariants & Safety:
  - An empty filter produces no draft; a rule without conditions would match
    the entire inbox.
  - Tag requirements are not rule conditions and are left out.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .filters import FilterExpression, is_empty


class RuleAction(str, Enum):
    ARCHIVE = "archive"
    DELETE = "delete"
    MARK_READ = "mark_read"
    STAR = "star"


@dataclass(frozen=True)
class RuleDraft:
    """Rule proposal ready for a rule editor."""

    name: str
    conditions: Dict[str, str] = field(default_factory=dict)
    actions: Dict[str, bool] = field(default_factory=dict)


def _describe(conditions: Dict[str, str]) -> str:
    if "from_contains" in conditions:
        return f"Mail from {conditions['from_contains']}"
    if "subject_contains" in conditions:
        return f"Subject contains {conditions['subject_contains']}"
    field_name, value = next(iter(conditions.items()))
    return f"{field_name.replace('_contains', '').capitalize()} contains {value}"


def draft_rule(
    filter: FilterExpression,
    action: RuleAction,
    *,
    name: Optional[str] = None,
) -> Optional[RuleDraft]:
    """Build a :class:`RuleDraft` from ``filter``.

    Args:
      filter: The effective triage filter (sender already forced).
      action: Disposition the rule should apply.
      name: Optional explicit rule name.

    Returns:
      The draft, or ``None`` when ``filter`` has no string constraint.
    """

    if is_empty(filter):
        return None
    conditions = {key: value for key, value in filter.constraints()}
    if not conditions:
        return None
    return RuleDraft(
        name=name or _describe(conditions),
        conditions=conditions,
        actions={action.value: True},
    )
