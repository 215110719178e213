"""Composable mail filters for sender-focused triage.

What:
  Define :class:`FilterExpression`, an immutable conjunction of substring
  constraints on sender, recipients, subject and body plus required tags,
  together with the helpers the session uses to combine and evaluate them.

Why:
  The session has to answer two questions on every user edit: "which mail
  does this match?" and "did the filter actually change?". Frozen dataclasses
  give structural equality for the second question for free, while
  :func:`matches` gives the in-memory gateway and tests the same semantics the
  IMAP search translation implements server-side.

How:
  String fields default to ``""`` (unconstrained) and ``tag_ids`` to an empty
  frozenset. :func:`force_sender` pins ``from_contains`` to the source being
  processed unless ``sender_cleared`` records that the user removed it.

Interfaces:
  :class:`FilterExpression`, :data:`EMPTY_FILTER`, :func:`merge`,
  :func:`is_empty`, :func:`force_sender`, :func:`clear_sender`,
  :func:`matches`, :func:`is_exact_address`.

Invariants & Safety:
  - Comparisons are case-insensitive and whitespace-trimmed.
  - Every non-empty constraint must hold (logical AND); every listed tag must
    be present on the message.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, FrozenSet, Iterable, Iterator, Tuple

from .models import Email


STRING_FIELDS: Tuple[str, ...] = (
    "from_contains",
    "to_contains",
    "cc_contains",
    "bcc_contains",
    "subject_contains",
    "body_contains",
)


@dataclass(frozen=True)
class FilterExpression:
    """Immutable conjunction of per-field substring constraints.

    Attributes:
      from_contains: Sender address or display-name fragment.
      to_contains / cc_contains / bcc_contains: Recipient fragments.
      subject_contains / body_contains: Text fragments.
      tag_ids: Tags that must all be present.
      sender_cleared: ``True`` once the user removed the forced sender while
        processing a source; :func:`force_sender` then leaves
        ``from_contains`` alone.
    """

    from_contains: str = ""
    to_contains: str = ""
    cc_contains: str = ""
    bcc_contains: str = ""
    subject_contains: str = ""
    body_contains: str = ""
    tag_ids: FrozenSet[str] = field(default_factory=frozenset)
    sender_cleared: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.tag_ids, frozenset):
            object.__setattr__(self, "tag_ids", frozenset(self.tag_ids))

    def with_fields(self, **changes: Any) -> "FilterExpression":
        """Return a copy with ``changes`` applied; ``tag_ids`` accepts any iterable."""

        if "tag_ids" in changes:
            changes["tag_ids"] = frozenset(changes["tag_ids"])
        return replace(self, **changes)

    def constraints(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(field, trimmed value)`` for every non-empty string field."""

        for name in STRING_FIELDS:
            value = getattr(self, name).strip()
            if value:
                yield name, value

    def as_dict(self) -> dict:
        """Plain mapping for logging and rule drafts."""

        data = {item.name: getattr(self, item.name) for item in fields(self)}
        data["tag_ids"] = sorted(self.tag_ids)
        return data


EMPTY_FILTER = FilterExpression()


def merge(base: FilterExpression, override: FilterExpression) -> FilterExpression:
    """Overlay ``override`` on ``base``.

    What:
      Each string field takes ``override``'s value when non-empty, otherwise
      keeps ``base``'s. ``tag_ids`` is replaced wholesale by ``override``'s set.
    """

    changes = {}
    for name in STRING_FIELDS:
        value = getattr(override, name)
        changes[name] = value if value.strip() else getattr(base, name)
    return FilterExpression(
        tag_ids=override.tag_ids,
        sender_cleared=base.sender_cleared or override.sender_cleared,
        **changes,
    )


def is_empty(expr: FilterExpression) -> bool:
    """Return ``True`` when ``expr`` constrains nothing."""

    return not any(True for _ in expr.constraints()) and not expr.tag_ids


def force_sender(expr: FilterExpression, address: str) -> FilterExpression:
    """Pin ``from_contains`` to ``address`` unless the user cleared it."""

    if expr.sender_cleared:
        return expr
    return replace(expr, from_contains=address)


def clear_sender(expr: FilterExpression) -> FilterExpression:
    """Drop the sender constraint and remember that it was cleared on purpose."""

    return replace(expr, from_contains="", sender_cleared=True)


def is_exact_address(term: str) -> bool:
    """Return ``True`` when ``term`` should match a sender address exactly.

    A fragment containing ``@`` and no wildcard characters is treated as a
    complete address, so ``bob@example.com`` does not also match
    ``bob@example.com.evil``.
    """

    return "@" in term and "%" not in term and "*" not in term


def _contains_any(values: Iterable[str], needle: str) -> bool:
    return any(needle in (value or "").lower() for value in values)


def matches(expr: FilterExpression, email: Email) -> bool:
    """Evaluate ``expr`` against ``email``.

    What:
      Check every non-empty constraint and the tag requirement.

    How:
      Lower-case both sides. ``from_contains`` compares exactly against the
      sender address when :func:`is_exact_address` holds, otherwise it looks
      for the fragment in the address or display name. Recipient constraints
      succeed when any address in the list contains the fragment.

    Returns:
      ``True`` when ``email`` satisfies the whole conjunction.
    """

    for name, raw in expr.constraints():
        needle = raw.lower()
        if name == "from_contains":
            if is_exact_address(needle):
                if email.from_address.lower() != needle:
                    return False
            elif not _contains_any((email.from_address, email.from_name or ""), needle):
                return False
        elif name == "to_contains":
            if not _contains_any(email.to, needle):
                return False
        elif name == "cc_contains":
            if not _contains_any(email.cc, needle):
                return False
        elif name == "bcc_contains":
            if not _contains_any(email.bcc, needle):
                return False
        elif name == "subject_contains":
            if needle not in email.subject.lower():
                return False
        elif name == "body_contains":
            if needle not in email.body.lower():
                return False
    return expr.tag_ids <= email.tag_ids
