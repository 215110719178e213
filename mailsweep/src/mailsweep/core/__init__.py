"""Aggregated exports for the MailSweep triage engine.

What:
  Provide a light-weight facade over the filter, ranking, paging, selection,
  session and executor modules.

Why:
  The CLI only needs a handful of names, and importing the session pulls in
  the logging and identifier utilities. Lazy access keeps ``mailsweep --help``
  fast and lets the gateway package import the value types without dragging
  the state machine along.

How:
  Defines ``__all__`` explicitly and implements ``__getattr__`` that imports
  the owning submodule on first access.

Invariants & Safety:
  - ``__getattr__`` only exposes names from ``__all__``; anything else raises
    :class:`AttributeError`.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "ActionOutcome",
    "BulkActionExecutor",
    "EMPTY_FILTER",
    "Email",
    "EmptyScopeError",
    "FilterExpression",
    "InvalidTransitionError",
    "MailFolder",
    "MailUpdate",
    "Notice",
    "PageCursor",
    "PageWindow",
    "RawSource",
    "RuleAction",
    "RuleDraft",
    "SelectionSet",
    "SessionBusyError",
    "Source",
    "SourceRanking",
    "StaleReferenceError",
    "TransportError",
    "TriageError",
    "TriageSession",
    "TriageStep",
    "UpdatedEmail",
]

_OWNERS = {
    "executor": {"ActionOutcome", "BulkActionExecutor"},
    "errors": {
        "EmptyScopeError",
        "InvalidTransitionError",
        "SessionBusyError",
        "StaleReferenceError",
        "TransportError",
        "TriageError",
    },
    "filters": {"EMPTY_FILTER", "FilterExpression"},
    "models": {"Email", "MailFolder", "MailUpdate", "RawSource", "Source", "UpdatedEmail"},
    "paging": {"PageCursor", "PageWindow"},
    "ranking": {"SourceRanking"},
    "rules": {"RuleAction", "RuleDraft"},
    "selection": {"SelectionSet"},
    "session": {"Notice", "TriageSession", "TriageStep"},
}


def __getattr__(name: str) -> Any:
    """Import the submodule that owns ``name`` and return the attribute."""

    for module_name, names in _OWNERS.items():
        if name in names:
            from importlib import import_module

            module = import_module(f"{__name__}.{module_name}")
            return getattr(module, name)
    raise AttributeError(name)
