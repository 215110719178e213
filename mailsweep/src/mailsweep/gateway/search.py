"""Translate triage filters into IMAP search criteria.

What:
  Map a :class:`~mailsweep.core.filters.FilterExpression` to the criteria list
  consumed by ``imapclient`` search operations.

Why:
  IMAP search keys already express "header contains" semantics, so the server
  can do the heavy lifting. Keeping the translation in one function keeps
  counts, page listings and all-scope id resolution consistent with each
  other.

How:
  Walks the non-empty string constraints in a fixed order, emits one
  ``(KEY, value)`` pair each, then one ``KEYWORD`` pair per required tag.
  :func:`flatten` turns the pairs into the flat list ``imapclient`` expects.

Interfaces:
  :func:`build_search`, :func:`flatten`, :func:`needs_utf8`.

Invariants & Safety:
  - Only whitelisted filter fields are translated.
  - An empty filter yields ``ALL`` rather than an empty criteria list.
"""
from __future__ import annotations

from typing import List, Tuple

from ..core.filters import FilterExpression

_SEARCH_KEYS = (
    ("from_contains", "FROM"),
    ("to_contains", "TO"),
    ("cc_contains", "CC"),
    ("bcc_contains", "BCC"),
    ("subject_contains", "SUBJECT"),
    ("body_contains", "BODY"),
)


def build_search(filter: FilterExpression) -> List[Tuple[str, str]]:
    """Convert ``filter`` into IMAP ``(keyword, value)`` criteria.

    Args:
      filter: Effective triage filter.

    Returns:
      Ordered criteria pairs; ``[("ALL", "")]`` when nothing is constrained.
    """

    criteria: List[Tuple[str, str]] = []
    for field_name, keyword in _SEARCH_KEYS:
        value = getattr(filter, field_name).strip()
        if value:
            criteria.append((keyword, value))
    for tag in sorted(filter.tag_ids):
        criteria.append(("KEYWORD", tag))
    if not criteria:
        criteria.append(("ALL", ""))
    return criteria


def flatten(criteria: List[Tuple[str, str]]) -> List[str]:
    """Flatten criteria pairs, dropping empty values of bare keywords."""

    flat: List[str] = []
    for keyword, value in criteria:
        flat.append(keyword)
        if value:
            flat.append(value)
    return flat


def needs_utf8(criteria: List[Tuple[str, str]]) -> bool:
    """Return ``True`` when any value requires ``CHARSET UTF-8``."""

    return any(not value.isascii() for _, value in criteria)
