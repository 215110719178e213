"""Checked-row tracking for the current triage page.

What:
  :class:`SelectionSet` records which message ids on the visible page the
  user has checked.

Why:
  Selected-scope actions must only ever touch rows the user can see. Keeping
  the page ids next to the selection lets every mutation enforce that, and
  lets :meth:`SelectionSet.reconcile` silently drop ids that vanished after a
  reload instead of failing the next action.

How:
  Holds the ordered page ids and a set of checked ids. :meth:`ordered` returns
  the selection in page order so gateway calls are deterministic.

Interfaces:
  :class:`SelectionSet`.

Invariants & Safety:
  - The selection is always a subset of the current page ids.
  - :meth:`reconcile` never grows the selection.
  - Select-all never spans more than one page; "everything matching" is a
    separate all-scope action, not a selection.
"""
from __future__ import annotations

from typing import Iterable, Iterator, List, Optional, Set, Tuple


class SelectionSet:
    """Mutable set of checked ids bounded by the current page."""

    def __init__(self, page_ids: Iterable[str] = ()) -> None:
        self._page_ids: Tuple[str, ...] = tuple(page_ids)
        self._selected: Set[str] = set()
        self._before_all: Optional[Set[str]] = None

    def __len__(self) -> int:
        return len(self._selected)

    def __contains__(self, email_id: object) -> bool:
        return email_id in self._selected

    def __iter__(self) -> Iterator[str]:
        return iter(self.ordered())

    def __bool__(self) -> bool:
        return bool(self._selected)

    @property
    def page_ids(self) -> Tuple[str, ...]:
        return self._page_ids

    def ordered(self) -> List[str]:
        """Selected ids in page order."""

        return [email_id for email_id in self._page_ids if email_id in self._selected]

    def snapshot(self) -> frozenset:
        return frozenset(self._selected)

    def add(self, email_id: str) -> bool:
        """Check ``email_id``; ids not on the page are ignored.

        Returns:
          ``True`` when the id is now selected.
        """

        if email_id not in self._page_ids:
            return False
        self._before_all = None
        self._selected.add(email_id)
        return True

    def remove(self, email_id: str) -> None:
        self._before_all = None
        self._selected.discard(email_id)

    def toggle(self, email_id: str) -> bool:
        if email_id in self._selected:
            self.remove(email_id)
            return False
        return self.add(email_id)

    def toggle_all(self, page_ids: Iterable[str]) -> None:
        """Select the whole page, or undo that if it is already fully selected.

        Undoing restores whatever was selected before the page was filled, so
        two consecutive calls on the same page are a no-op. A page that was
        fully selected by hand is cleared.
        """

        ids = tuple(page_ids)
        if ids != self._page_ids:
            self._before_all = None
        self._page_ids = ids
        if self._selected == set(ids):
            self._selected = self._before_all or set()
            self._before_all = None
        else:
            self._before_all = set(self._selected)
            self._selected = set(ids)

    def clear(self) -> None:
        self._before_all = None
        self._selected = set()

    def reconcile(self, page_ids: Iterable[str]) -> Set[str]:
        """Adopt a freshly loaded page and drop ids that are no longer on it.

        Returns:
          The ids that were dropped (empty when nothing went stale).
        """

        self._page_ids = tuple(page_ids)
        self._before_all = None
        present = set(self._page_ids)
        dropped = self._selected - present
        self._selected &= present
        return dropped
