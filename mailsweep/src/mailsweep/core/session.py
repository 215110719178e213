"""Triage session state machine.

What:
  :class:`TriageSession` owns every piece of triage state (step, ranked
  senders, current sender, completed senders, processed counter, filter,
  page cursor, selection, current page rows) and exposes the user intents
  that move it between the ``SELECTING``, ``SUMMARY``, ``PROCESSING`` and
  ``COMPLETED`` steps.

Why:
  A front end should hold nothing but unsubmitted input. Putting the walk over
  senders, the forced sender filter, pagination and the refresh points in one
  object makes each transition unit-testable without a terminal or a mail
  server, and makes the refresh schedule explicit instead of implied by
  whatever happened to re-render.

How:
  - Intents validate the current step, mutate state under a re-entrant lock
    and then call :meth:`TriageSession.refresh` at the documented points.
  - Every change that alters what the page shows (sender, filter, page, page
    size) bumps ``generation``. Refresh work captures the generation in a
    :class:`RefreshTicket` and discards its result if the generation moved on
    before the gateway answered.
  - Refresh work is handed to a ``submit`` callable: inline by default, or a
    thread pool's ``submit`` for a responsive front end.
  - Gateway failures during refresh become dismissible :class:`Notice`
    entries; they never propagate.

Interfaces:
  :class:`TriageStep`, :class:`Notice`, :class:`RefreshTicket`,
  :class:`TriageSession`.

Invariants & Safety:
  - The walked sender list is fixed while ``PROCESSING``; refreshes only
    update counts in place. Re-ranking happens on entering ``SUMMARY``.
  - A sender becomes completed only by being advanced past with ``next``.
  - ``processed_count`` never decreases except through ``reset``.
  - Filter, cursor and selection reset whenever the current sender changes.
  - Only one bulk operation may be outstanding; see :meth:`operation`.
"""
from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, FrozenSet, Iterator, List, Optional, Tuple

from .errors import InvalidTransitionError, SessionBusyError, StaleReferenceError, TransportError
from .filters import EMPTY_FILTER, FilterExpression, force_sender, is_empty
from .models import Email, Source
from .paging import PageCursor, PageWindow
from .ranking import SourceRanking, rank, total_matching
from .rules import RuleAction, RuleDraft, draft_rule
from .selection import SelectionSet
from ..utils.ids import new_session_id
from ..utils.logging import JsonLogger, get_logger

if TYPE_CHECKING:
    from ..config.preferences import PreferenceStore
    from ..gateway.base import MailGateway


DEFAULT_PAGE_SIZE = 25
DEFAULT_MAX_PAGE_SIZE = 200

Submit = Callable[[Callable[[], None]], Any]


def run_inline(task: Callable[[], None]) -> None:
    """Default ``submit``: run refresh work synchronously."""

    task()


class TriageStep(str, Enum):
    SELECTING = "selecting"
    SUMMARY = "summary"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class Notice:
    """Transient, dismissible message for the front end."""

    level: str
    message: str


@dataclass(frozen=True)
class RefreshTicket:
    """Snapshot of the request parameters a refresh was issued with."""

    generation: int
    reason: str
    filter: FilterExpression
    offset: int
    limit: int
    attempt: int = 0


class TriageSession:
    """Sender-by-sender inbox triage state machine.

    What:
      Tracks the triage walk and mediates every gateway read. Bulk mutations
      are driven by :class:`~mailsweep.core.executor.BulkActionExecutor`,
      which reports back through :meth:`record_success`,
      :meth:`report_failure` and :meth:`handle_stale`.

    Why:
      The executor needs a narrow, explicit surface to commit results so that
      a failed mutation provably leaves the session untouched.

    How:
      State lives in private attributes guarded by ``_lock``; public
      properties return immutable snapshots (tuples, frozensets, frozen
      dataclasses).
    """

    def __init__(
        self,
        gateway: "MailGateway",
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
        preferences: Optional["PreferenceStore"] = None,
        logger: Optional[JsonLogger] = None,
        submit: Optional[Submit] = None,
        session_id: Optional[str] = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._gateway = gateway
        self._ranking = SourceRanking(gateway)
        self._preferences = preferences
        self._submit = submit or run_inline
        self.session_id = session_id or new_session_id()
        self._logger = (logger or get_logger("mailsweep.session")).bind(session=self.session_id)
        self._lock = threading.RLock()
        self._page_size = page_size
        self._max_page_size = max(1, max_page_size)
        self._generation = 0
        self._sources_generation = 0
        self._busy: Optional[str] = None
        self._notices: List[Notice] = []
        self._reset_state()

    def _reset_state(self) -> None:
        self._step = TriageStep.SELECTING
        self._source_limit: Optional[int] = None
        self._sources: Tuple[Source, ...] = ()
        self._index = 0
        self._completed: set[int] = set()
        self._processed = 0
        self._user_filter = EMPTY_FILTER
        self._cursor = PageCursor(self._page_size)
        self._selection = SelectionSet()
        self._emails: Tuple[Email, ...] = ()
        self._total_count = 0

    # Read-outs ----------------------------------------------------------
    @property
    def gateway(self) -> "MailGateway":
        return self._gateway

    @property
    def logger(self) -> JsonLogger:
        return self._logger

    @property
    def step(self) -> TriageStep:
        return self._step

    @property
    def source_limit(self) -> Optional[int]:
        return self._source_limit

    @property
    def sources(self) -> Tuple[Source, ...]:
        return self._sources

    @property
    def current_source_index(self) -> int:
        return self._index

    @property
    def completed_source_indices(self) -> FrozenSet[int]:
        return frozenset(self._completed)

    @property
    def processed_count(self) -> int:
        return self._processed

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def busy(self) -> Optional[str]:
        """Name of the outstanding bulk operation, or ``None``."""

        return self._busy

    @property
    def current_source(self) -> Optional[Source]:
        if self._step is not TriageStep.PROCESSING or not self._sources:
            return None
        return self._sources[self._index]

    @property
    def filter(self) -> FilterExpression:
        """Effective filter: the user's edits with the sender forced in."""

        source = self.current_source
        if source is None:
            return self._user_filter
        return force_sender(self._user_filter, source.address)

    @property
    def has_active_filter(self) -> bool:
        return self._step is TriageStep.PROCESSING and not is_empty(self.filter)

    @property
    def cursor(self) -> PageCursor:
        return self._cursor

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def window(self) -> PageWindow:
        return self._cursor.window(self._total_count)

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def emails(self) -> Tuple[Email, ...]:
        return self._emails

    @property
    def selection(self) -> FrozenSet[str]:
        return self._selection.snapshot()

    def selected_ids(self) -> List[str]:
        """Selected ids in page order."""

        with self._lock:
            return self._selection.ordered()

    @property
    def notices(self) -> Tuple[Notice, ...]:
        return tuple(self._notices)

    @property
    def total_source_emails(self) -> int:
        return total_matching(self._sources)

    @property
    def progress_percent(self) -> int:
        """Walk progress, rounded half up to a whole percent.

        While processing, the current sender counts as in progress; otherwise
        only completed senders count.
        """

        total = len(self._sources)
        if total == 0:
            return 0
        if self._step is TriageStep.PROCESSING:
            done = self._index + 1
        else:
            done = len(self._completed)
        return (done * 200 + total) // (2 * total)

    # Guards -------------------------------------------------------------
    def _require(self, intent: str, *steps: TriageStep) -> None:
        if self._step not in steps:
            raise InvalidTransitionError(intent, self._step.value)

    def _ensure_idle(self) -> None:
        if self._busy is not None:
            raise SessionBusyError(self._busy)

    def require_processing(self, intent: str) -> None:
        self._require(intent, TriageStep.PROCESSING)

    @contextlib.contextmanager
    def operation(self, name: str) -> Iterator[None]:
        """Mark the session busy with ``name`` for the duration of the block.

        Raises:
          SessionBusyError: When another operation is already outstanding.
        """

        with self._lock:
            self._ensure_idle()
            self._busy = name
        try:
            yield
        finally:
            with self._lock:
                self._busy = None

    def _bump(self) -> int:
        self._generation += 1
        return self._generation

    def _clear_page(self) -> None:
        self._selection = SelectionSet()
        self._emails = ()

    # Transitions --------------------------------------------------------
    def choose(self, limit: int) -> bool:
        """``SELECTING -> SUMMARY``: fetch and rank the top ``limit`` senders.

        Returns:
          ``True`` on success; ``False`` when the gateway failed, in which case
          the session stays in ``SELECTING`` and a notice is recorded.
        """

        with self._lock:
            self._ensure_idle()
            self._require("choose", TriageStep.SELECTING)
        if limit <= 0:
            raise ValueError("limit must be positive")
        page_size = self._preferences.page_size() if self._preferences else self._page_size
        try:
            sources = self._fetch_sources(limit)
        except TransportError as exc:
            self.report_failure("choose", exc)
            return False
        with self._lock:
            self._source_limit = limit
            self._page_size = page_size
            self._cursor = PageCursor(page_size)
            self._sources = tuple(sources)
            self._sources_generation += 1
            self._step = TriageStep.SUMMARY
        self._logger.info("summary_entered", limit=limit, sources=len(sources), page_size=page_size)
        return True

    def _fetch_sources(self, limit: int) -> List[Source]:
        try:
            return self._ranking.fetch(limit)
        except StaleReferenceError:
            self._logger.warning("stale_reference", reason="choose", attempt=1)
        try:
            return self._ranking.fetch(limit)
        except StaleReferenceError as exc:
            raise TransportError("choose", str(exc)) from exc

    def start(self) -> bool:
        """``SUMMARY -> PROCESSING(0)``; a no-op when no senders were found."""

        with self._lock:
            self._ensure_idle()
            self._require("start", TriageStep.SUMMARY)
            if not self._sources:
                self._logger.info("start_skipped", reason="no_sources")
                return False
            self._step = TriageStep.PROCESSING
            self._enter_source(0, "start")
        return True

    def jump_to(self, index: int) -> None:
        """``SUMMARY -> PROCESSING(index)``."""

        with self._lock:
            self._ensure_idle()
            self._require("jump_to", TriageStep.SUMMARY)
            if not 0 <= index < len(self._sources):
                raise IndexError(f"source index {index} out of range")
            self._step = TriageStep.PROCESSING
            self._enter_source(index, "jump_to")

    def back(self) -> None:
        """``PROCESSING -> SUMMARY``; re-ranks senders on arrival."""

        with self._lock:
            self._ensure_idle()
            self._require("back", TriageStep.PROCESSING)
            self._step = TriageStep.SUMMARY
            self._bump()
            self._clear_page()
            self._logger.info("summary_entered", index=self._index, reason="back")
        self.refresh_sources("summary_entered")

    def next(self) -> None:
        """Mark the current sender completed and advance, or finish the walk."""

        with self._lock:
            self._ensure_idle()
            self._require("next", TriageStep.PROCESSING)
            self._completed.add(self._index)
            if self._index >= len(self._sources) - 1:
                self._step = TriageStep.COMPLETED
                self._bump()
                self._clear_page()
                self._logger.info(
                    "triage_completed",
                    completed=len(self._completed),
                    processed=self._processed,
                )
                return
            self._enter_source(self._index + 1, "next")

    def prev(self) -> None:
        """Step back one sender; a no-op on the first sender."""

        with self._lock:
            self._ensure_idle()
            self._require("prev", TriageStep.PROCESSING)
            if self._index == 0:
                return
            self._enter_source(self._index - 1, "prev")

    def reset(self) -> None:
        """Start over from ``SELECTING``, discarding all session state."""

        with self._lock:
            self._ensure_idle()
            self._bump()
            self._sources_generation += 1
            self._notices = []
            self._reset_state()
        self._logger.info("session_reset")

    def _enter_source(self, index: int, reason: str) -> None:
        """Entry side effects of ``PROCESSING(index)``. Caller holds the lock."""

        self._index = index
        self._user_filter = EMPTY_FILTER
        self._cursor = PageCursor(self._page_size)
        self._clear_page()
        self._total_count = 0
        self._bump()
        source = self._sources[index]
        self._logger.info(
            "source_entered",
            index=index,
            address=source.address,
            matching=source.matching_count,
            reason=reason,
        )
        self.refresh(reason, sources=False)

    # Filtering, paging, selection --------------------------------------
    def set_filter(self, expr: FilterExpression) -> bool:
        """Apply a user-edited filter.

        What:
          ``expr`` is the filter as the user sees it, sender included. Keeping
          the source's address (in any case) keeps the sender forced; any
          other ``from_contains``, including an empty one, releases it.

        Returns:
          ``True`` when the effective filter changed and the page was reset.
        """

        with self._lock:
            self._ensure_idle()
            self._require("set_filter", TriageStep.PROCESSING)
            source = self._sources[self._index]
            if expr.from_contains.strip().lower() == source.key:
                user = replace(expr, from_contains="", sender_cleared=False)
            else:
                user = replace(expr, sender_cleared=True)
            return self._apply_user_filter(user, "filter_changed")

    def update_filter(self, **changes: Any) -> bool:
        """Edit individual fields of the effective filter."""

        return self.set_filter(self.filter.with_fields(**changes))

    def clear_filter(self) -> bool:
        """Drop every user constraint and restore the forced sender."""

        with self._lock:
            self._ensure_idle()
            self._require("clear_filter", TriageStep.PROCESSING)
            return self._apply_user_filter(EMPTY_FILTER, "filter_cleared")

    def _apply_user_filter(self, user: FilterExpression, reason: str) -> bool:
        previous = self.filter
        self._user_filter = user
        if self.filter == previous:
            return False
        self._cursor = self._cursor.with_page(1)
        self._clear_page()
        self._bump()
        self._logger.info(reason, filter=self.filter.as_dict())
        self.refresh(reason, sources=False)
        return True

    def go_to_page(self, page_index: int) -> bool:
        """Move to ``page_index`` (clamped); returns ``True`` if the page changed."""

        with self._lock:
            self._ensure_idle()
            self._require("go_to_page", TriageStep.PROCESSING)
            target = self._cursor.with_page(page_index).clamp(self._total_count)
            if target == self._cursor:
                return False
            self._cursor = target
            self._clear_page()
            self._bump()
            self._submit(partial(self._run_page, self._ticket("page_changed")))
            return True

    def next_page(self) -> bool:
        return self.go_to_page(self._cursor.page_index + 1)

    def previous_page(self) -> bool:
        return self.go_to_page(self._cursor.page_index - 1)

    def set_page_size(self, page_size: int) -> int:
        """Change and persist the page size; returns the size in effect.

        The size is clamped to ``1..max_page_size`` whether or not it is
        persisted. A failure to persist is reported as a warning notice and
        does not prevent the change from applying to this session.
        """

        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._ensure_idle()
        stored = min(page_size, self._max_page_size)
        if self._preferences is not None:
            try:
                stored = self._preferences.save_page_size(stored)
            except OSError as exc:
                self.notify("warning", f"Could not save page size: {exc}")
                self._logger.warning("page_size_not_saved", error=str(exc))
        with self._lock:
            self._ensure_idle()
            self._page_size = stored
            self._cursor = self._cursor.with_page_size(stored)
            if self._step is TriageStep.PROCESSING:
                self._clear_page()
                self._bump()
                self._submit(partial(self._run_page, self._ticket("page_size_changed")))
        return stored

    def select(self, email_id: str) -> bool:
        with self._lock:
            self._ensure_idle()
            self._require("select", TriageStep.PROCESSING)
            return self._selection.add(email_id)

    def deselect(self, email_id: str) -> None:
        with self._lock:
            self._ensure_idle()
            self._require("deselect", TriageStep.PROCESSING)
            self._selection.remove(email_id)

    def toggle(self, email_id: str) -> bool:
        with self._lock:
            self._ensure_idle()
            self._require("toggle", TriageStep.PROCESSING)
            return self._selection.toggle(email_id)

    def toggle_all(self) -> None:
        with self._lock:
            self._ensure_idle()
            self._require("toggle_all", TriageStep.PROCESSING)
            self._selection.toggle_all(email.id for email in self._emails)

    def draft_rule(self, action: RuleAction) -> Optional[RuleDraft]:
        """Rule proposal matching the current effective filter."""

        self._require("draft_rule", TriageStep.PROCESSING)
        return draft_rule(self.filter, action)

    # Notices ------------------------------------------------------------
    def notify(self, level: str, message: str) -> None:
        with self._lock:
            self._notices.append(Notice(level=level, message=message))

    def dismiss_notice(self, index: int = 0) -> None:
        with self._lock:
            if 0 <= index < len(self._notices):
                del self._notices[index]

    # Executor callbacks -------------------------------------------------
    def record_success(self, action: str, count: int, message: str) -> None:
        """Commit a confirmed bulk mutation over ``count`` messages."""

        if count < 0:
            raise ValueError("count must be non-negative")
        with self._lock:
            self._processed += count
            self._selection.clear()
            self._notices.append(Notice(level="success", message=message))
        self._logger.info("action_applied", action=action, count=count, processed=self._processed)

    def report_failure(self, action: str, exc: TransportError) -> None:
        """Surface a gateway failure without touching session state."""

        self.notify("error", str(exc))
        self._logger.error("action_failed", action=action, error=exc.detail, operation=exc.operation)

    def handle_stale(self, reason: str) -> None:
        """Drop the selection and reload after ids were invalidated."""

        with self._lock:
            self._clear_page()
            self._bump()
        self._logger.warning("stale_reference", reason=reason)
        self.refresh(f"{reason}:stale")

    # Refresh ------------------------------------------------------------
    def _ticket(self, reason: str, attempt: int = 0) -> RefreshTicket:
        return RefreshTicket(
            generation=self._generation,
            reason=reason,
            filter=self.filter,
            offset=(self._cursor.page_index - 1) * self._cursor.page_size,
            limit=self._cursor.page_size,
            attempt=attempt,
        )

    def _is_current(self, ticket: RefreshTicket) -> bool:
        return ticket.generation == self._generation and self._step is TriageStep.PROCESSING

    def refresh(self, reason: str = "manual", *, sources: bool = True) -> None:
        """Reload the page, the total count and (optionally) the ranking.

        What:
          Submits up to three independent refresh tasks. Page and count are
          only loaded while ``PROCESSING``; the ranking is reloaded in every
          step except ``SELECTING``.

        Args:
          reason: Label recorded in logs and tickets.
          sources: Whether to reload the sender ranking too.
        """

        with self._lock:
            tasks: List[Callable[[], None]] = []
            if self._step is TriageStep.PROCESSING:
                ticket = self._ticket(reason)
                tasks.append(partial(self._run_count, ticket))
                tasks.append(partial(self._run_page, ticket))
            if sources and self._step is not TriageStep.SELECTING:
                tasks.append(partial(self._run_sources, self._sources_generation, reason))
        self._logger.debug("refresh_requested", reason=reason, tasks=len(tasks))
        for task in tasks:
            self._submit(task)

    def refresh_sources(self, reason: str = "manual") -> None:
        """Reload only the sender ranking."""

        with self._lock:
            if self._step is TriageStep.SELECTING:
                return
            generation = self._sources_generation
        self._submit(partial(self._run_sources, generation, reason))

    def _run_count(self, ticket: RefreshTicket) -> None:
        try:
            total = self._gateway.count_emails(ticket.filter)
        except StaleReferenceError:
            self._retry_stale(ticket)
            return
        except TransportError as exc:
            self._refresh_failed(ticket, exc)
            return
        follow_up: Optional[RefreshTicket] = None
        with self._lock:
            if not self._is_current(ticket):
                self._logger.debug("refresh_discarded", part="count", reason=ticket.reason)
                return
            self._total_count = total
            clamped = self._cursor.clamp(total)
            if clamped != self._cursor:
                self._cursor = clamped
                self._clear_page()
                self._bump()
                follow_up = self._ticket("page_clamped")
        if follow_up is not None:
            self._logger.info("page_clamped", page=follow_up.offset // follow_up.limit + 1, total=total)
            self._submit(partial(self._run_page, follow_up))

    def _run_page(self, ticket: RefreshTicket) -> None:
        try:
            emails = tuple(self._gateway.list_emails(ticket.filter, ticket.offset, ticket.limit))
        except StaleReferenceError:
            self._retry_stale(ticket)
            return
        except TransportError as exc:
            self._refresh_failed(ticket, exc)
            return
        with self._lock:
            if not self._is_current(ticket):
                self._logger.debug("refresh_discarded", part="page", reason=ticket.reason)
                return
            self._emails = emails
            dropped = self._selection.reconcile(email.id for email in emails)
        if dropped:
            self._logger.info("selection_reconciled", dropped=len(dropped))

    def _run_sources(self, generation: int, reason: str, attempt: int = 0) -> None:
        limit = self._source_limit
        if limit is None:
            return
        try:
            raw = self._gateway.list_top_sources(limit)
        except StaleReferenceError:
            self._logger.warning("stale_reference", part="sources", reason=reason, attempt=attempt + 1)
            if attempt == 0:
                self._submit(partial(self._run_sources, generation, reason, 1))
            return
        except TransportError as exc:
            self.notify("error", str(exc))
            self._logger.error("refresh_failed", part="sources", reason=reason, error=exc.detail)
            return
        with self._lock:
            if generation != self._sources_generation or self._step is TriageStep.SELECTING:
                self._logger.debug("refresh_discarded", part="sources", reason=reason)
                return
            frozen = self._step is not TriageStep.SUMMARY
            refreshed = self._ranking.refresh(self._sources, limit, frozen=frozen, raw=raw)
            if not frozen:
                self._remap_completed(refreshed)
            self._sources = tuple(refreshed)
            if self._sources and self._index >= len(self._sources):
                self._index = len(self._sources) - 1
        self._logger.debug("sources_refreshed", reason=reason, frozen=frozen, sources=len(refreshed))

    def _remap_completed(self, refreshed: List[Source]) -> None:
        """Carry completion marks and the pointer across a re-rank by address."""

        completed_keys = {self._sources[i].key for i in self._completed if i < len(self._sources)}
        current_key = self._sources[self._index].key if self._index < len(self._sources) else None
        self._completed = {i for i, source in enumerate(refreshed) if source.key in completed_keys}
        for i, source in enumerate(refreshed):
            if source.key == current_key:
                self._index = i
                break

    def _retry_stale(self, ticket: RefreshTicket) -> None:
        with self._lock:
            if not self._is_current(ticket):
                return
            self._clear_page()
            self._bump()
            retry = self._ticket(ticket.reason, attempt=ticket.attempt + 1)
        self._logger.warning("stale_reference", reason=ticket.reason, attempt=retry.attempt)
        if retry.attempt > 1:
            return
        self._submit(partial(self._run_count, retry))
        self._submit(partial(self._run_page, retry))

    def _refresh_failed(self, ticket: RefreshTicket, exc: TransportError) -> None:
        with self._lock:
            current = self._is_current(ticket)
            if current:
                self._notices.append(Notice(level="error", message=str(exc)))
        self._logger.error(
            "refresh_failed",
            reason=ticket.reason,
            error=exc.detail,
            discarded=not current,
        )
