"""Pagination arithmetic for the triage page.

What:
  Convert a page size and a 1-based page index into an offset/limit request
  and the page metadata shown to the user.

Why:
  Counts change underneath the user after every bulk action. Clamping in one
  place guarantees the session never asks the gateway for a page past the end
  and never shows "page 4 of 3".

How:
  :class:`PageCursor` is the user's intent (size and index);
  :func:`derive` resolves it against a total count into a
  :class:`PageWindow`.

Interfaces:
  :class:`PageCursor`, :class:`PageWindow`, :func:`derive`,
  :func:`total_pages_for`.

Invariants & Safety:
  - ``total_pages >= 1`` even when the total count is zero.
  - ``1 <= page_index <= total_pages`` on every derived window.
  - When the total is positive,
    ``1 <= first_item_ordinal <= last_item_ordinal <= total_count``;
    otherwise both ordinals are ``0``.
"""
from __future__ import annotations

from dataclasses import dataclass, replace


def total_pages_for(total_count: int, page_size: int) -> int:
    """Ceiling division with a floor of one page."""

    if page_size <= 0:
        raise ValueError("page_size must be positive")
    if total_count <= 0:
        return 1
    return -(-total_count // page_size)


@dataclass(frozen=True)
class PageWindow:
    """Resolved page metadata for a given total count."""

    page_index: int
    total_pages: int
    offset: int
    limit: int
    first_item_ordinal: int
    last_item_ordinal: int

    @property
    def has_previous(self) -> bool:
        return self.page_index > 1

    @property
    def has_next(self) -> bool:
        return self.page_index < self.total_pages


def derive(total_count: int, page_size: int, page_index: int) -> PageWindow:
    """Resolve ``page_index`` of size ``page_size`` against ``total_count``.

    What:
      Clamp the index into ``[1, total_pages]`` and compute the request
      offset/limit plus the 1-based ordinals of the first and last rows.

    Args:
      total_count: Number of messages matching the filter (negative values are
        treated as zero).
      page_size: Rows per page, strictly positive.
      page_index: Requested 1-based page.

    Returns:
      :class:`PageWindow` for the clamped page.
    """

    total = max(0, total_count)
    pages = total_pages_for(total, page_size)
    index = min(max(1, page_index), pages)
    offset = (index - 1) * page_size
    if total == 0:
        first = last = 0
    else:
        first = offset + 1
        last = min(offset + page_size, total)
    return PageWindow(
        page_index=index,
        total_pages=pages,
        offset=offset,
        limit=page_size,
        first_item_ordinal=first,
        last_item_ordinal=last,
    )


@dataclass(frozen=True)
class PageCursor:
    """The user's requested page size and 1-based page index."""

    page_size: int
    page_index: int = 1

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")
        if self.page_index < 1:
            raise ValueError("page_index must be at least 1")

    def window(self, total_count: int) -> PageWindow:
        return derive(total_count, self.page_size, self.page_index)

    def clamp(self, total_count: int) -> "PageCursor":
        """Return a cursor whose index lies inside the pages of ``total_count``."""

        index = self.window(total_count).page_index
        if index == self.page_index:
            return self
        return replace(self, page_index=index)

    def with_page(self, page_index: int) -> "PageCursor":
        return replace(self, page_index=max(1, page_index))

    def with_page_size(self, page_size: int) -> "PageCursor":
        """Switch page size and go back to the first page."""

        return PageCursor(page_size=page_size, page_index=1)
