"""Exception hierarchy for the triage engine.

What:
  Name the failure modes the session and executor distinguish.

Why:
  Only :class:`TransportError` reaches the user, and only as a dismissible
  notice. The remaining types let callers tell programming mistakes
  (:class:`InvalidTransitionError`, :class:`SessionBusyError`) apart from
  conditions that are resolved silently (:class:`StaleReferenceError`).

Interfaces:
  :class:`TriageError`, :class:`TransportError`, :class:`EmptyScopeError`,
  :class:`StaleReferenceError`, :class:`InvalidTransitionError`,
  :class:`SessionBusyError`.

Invariants & Safety:
  - Gateway implementations raise :class:`TransportError` (or
    :class:`StaleReferenceError`) and nothing else for remote failures.
  - :class:`EmptyScopeError` is never raised by the bundled executor; empty
    actions are no-ops. It exists for gateways that refuse empty id lists.
"""
from __future__ import annotations


class TriageError(Exception):
    """Base class for every error raised by the triage engine."""


class TransportError(TriageError):
    """A gateway call failed (network, protocol or server error).

    What:
      Wraps the underlying library exception while keeping a short,
      user-presentable ``operation`` label.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.detail = message


class EmptyScopeError(TriageError):
    """A bulk action was invoked with zero targets."""


class StaleReferenceError(TriageError):
    """The identifiers being viewed no longer refer to the same messages.

    What:
      Raised by gateways when the server invalidates previously issued ids
      (for IMAP, a ``UIDVALIDITY`` change). The session reacts by dropping its
      selection and refetching; the user never sees it.
    """


class InvalidTransitionError(TriageError):
    """An intent was submitted from a step that does not accept it."""

    def __init__(self, intent: str, step: str) -> None:
        super().__init__(f"{intent} is not valid while {step}")
        self.intent = intent
        self.step = step


class SessionBusyError(TriageError):
    """An intent arrived while a bulk operation was still outstanding."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"session busy with {operation}")
        self.operation = operation
