"""Bulk actions over the selection or everything matching the filter.

What:
  :class:`BulkActionExecutor` turns a user's action into gateway mutations
  and commits the confirmed outcome back into a
  :class:`~mailsweep.core.session.TriageSession`.

Why:
  Success and failure must leave the session in provably different states:
  on success the processed counter grows, the selection clears and data is
  refreshed; on failure nothing changes except a notice. Routing every action
  through one executor keeps that contract in a single place.

How:
  - Selected-scope actions (``mark_read``, ``star``, ``archive``, ``delete``)
    act on the selected ids of the current page, in page order.
  - All-scope actions (``mark_all_read``, ``archive_all``, ``delete_all``)
    resolve the complete id set with one ``list_all_email_ids`` call and pass
    it to a single mutation call.
  - Each action runs inside :meth:`TriageSession.operation`, so a second
    action started before the first returns raises
    :class:`~mailsweep.core.errors.SessionBusyError`.
  - ``archive_all`` and ``delete_all`` advance to the next sender once the
    mutation is confirmed; the other actions refresh in place.

Interfaces:
  :class:`ActionOutcome`, :class:`BulkActionExecutor`.

Invariants & Safety:
  - Actions with zero targets make no mutation call, do not count as
    processed and do not advance.
  - A :class:`~mailsweep.core.errors.TransportError` from any gateway call
    leaves selection, counters and position untouched.
  - A :class:`~mailsweep.core.errors.StaleReferenceError` clears the
    selection and reloads the page without a user-facing notice.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .errors import StaleReferenceError, TransportError
from .models import MailFolder, MailUpdate
from .session import TriageSession
from ..utils.logging import JsonLogger


SELECTED = "selected"
ALL = "all"


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one bulk action.

    Attributes:
      action: Action name, e.g. ``"archive_all"``.
      scope: ``"selected"`` or ``"all"``.
      requested: Number of ids the mutation targeted.
      applied: Number of messages the gateway reported as changed.
      ok: ``False`` when the gateway failed.
      error: Failure message when ``ok`` is ``False``.
      advanced: ``True`` when the session moved to the next sender.
      stale: ``True`` when the action was dropped because ids went stale.
    """

    action: str
    scope: str
    requested: int
    applied: int = 0
    ok: bool = True
    error: Optional[str] = None
    advanced: bool = False
    stale: bool = False

    @property
    def noop(self) -> bool:
        return self.ok and not self.stale and self.requested == 0


def _plural(count: int) -> str:
    return f"{count} email" if count == 1 else f"{count} emails"


class BulkActionExecutor:
    """Apply bulk actions on behalf of a :class:`TriageSession`."""

    def __init__(self, session: TriageSession, *, logger: Optional[JsonLogger] = None) -> None:
        self._session = session
        self._gateway = session.gateway
        self._logger = logger or session.logger

    # Selected scope -----------------------------------------------------
    def mark_read(self, value: bool = True) -> ActionOutcome:
        name = "mark_read" if value else "mark_unread"
        verb = "Marked {} as read" if value else "Marked {} as unread"
        return self._run_selected(
            name,
            lambda ids: len(self._gateway.bulk_update(ids, MailUpdate(is_read=value))),
            verb,
        )

    def star(self, value: bool = True) -> ActionOutcome:
        name = "star" if value else "unstar"
        verb = "Starred {}" if value else "Unstarred {}"
        return self._run_selected(
            name,
            lambda ids: len(self._gateway.bulk_update(ids, MailUpdate(is_starred=value))),
            verb,
        )

    def archive(self) -> ActionOutcome:
        return self._run_selected(
            "archive",
            lambda ids: len(self._gateway.bulk_update(ids, MailUpdate(folder=MailFolder.ARCHIVE))),
            "Archived {}",
        )

    def delete(self) -> ActionOutcome:
        return self._run_selected("delete", self._gateway.bulk_delete, "Deleted {}")

    # All scope ----------------------------------------------------------
    def mark_all_read(self) -> ActionOutcome:
        return self._run_all(
            "mark_all_read",
            lambda ids: len(self._gateway.bulk_update(ids, MailUpdate(is_read=True))),
            "Marked {} as read",
            advance=False,
        )

    def archive_all(self) -> ActionOutcome:
        return self._run_all(
            "archive_all",
            lambda ids: len(self._gateway.bulk_update(ids, MailUpdate(folder=MailFolder.ARCHIVE))),
            "Archived {}",
            advance=True,
        )

    def delete_all(self) -> ActionOutcome:
        return self._run_all("delete_all", self._gateway.bulk_delete, "Deleted {}", advance=True)

    # Plumbing -----------------------------------------------------------
    def _run_selected(
        self,
        name: str,
        mutate: Callable[[Sequence[str]], int],
        verb: str,
    ) -> ActionOutcome:
        session = self._session
        session.require_processing(name)
        with session.operation(name):
            ids = session.selected_ids()
            if not ids:
                self._logger.debug("action_skipped", action=name, scope=SELECTED)
                return ActionOutcome(action=name, scope=SELECTED, requested=0)
            outcome = self._mutate(name, SELECTED, ids, mutate, verb)
        if outcome.ok:
            session.refresh(name)
        return outcome

    def _run_all(
        self,
        name: str,
        mutate: Callable[[Sequence[str]], int],
        verb: str,
        *,
        advance: bool,
    ) -> ActionOutcome:
        session = self._session
        session.require_processing(name)
        with session.operation(name):
            try:
                ids = list(self._gateway.list_all_email_ids(session.filter))
            except StaleReferenceError:
                session.handle_stale(name)
                return ActionOutcome(action=name, scope=ALL, requested=0, ok=False, stale=True)
            except TransportError as exc:
                session.report_failure(name, exc)
                return ActionOutcome(action=name, scope=ALL, requested=0, ok=False, error=str(exc))
            if not ids:
                self._logger.debug("action_skipped", action=name, scope=ALL)
                return ActionOutcome(action=name, scope=ALL, requested=0)
            outcome = self._mutate(name, ALL, ids, mutate, verb)
        if not outcome.ok:
            return outcome
        if advance:
            session.refresh_sources(name)
            session.next()
            return ActionOutcome(
                action=outcome.action,
                scope=outcome.scope,
                requested=outcome.requested,
                applied=outcome.applied,
                advanced=True,
            )
        session.refresh(name)
        return outcome

    def _mutate(
        self,
        name: str,
        scope: str,
        ids: List[str],
        mutate: Callable[[Sequence[str]], int],
        verb: str,
    ) -> ActionOutcome:
        """Run ``mutate`` and commit or report; caller holds the operation."""

        session = self._session
        try:
            applied = mutate(ids)
        except StaleReferenceError:
            session.handle_stale(name)
            return ActionOutcome(action=name, scope=scope, requested=len(ids), ok=False, stale=True)
        except TransportError as exc:
            session.report_failure(name, exc)
            return ActionOutcome(
                action=name,
                scope=scope,
                requested=len(ids),
                ok=False,
                error=str(exc),
            )
        session.record_success(name, len(ids), verb.format(_plural(len(ids))))
        return ActionOutcome(action=name, scope=scope, requested=len(ids), applied=applied)
