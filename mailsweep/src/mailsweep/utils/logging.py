"""Structured JSON logging for triage sessions.

What:
  Emit one JSON object per line for every session transition, refresh and
  bulk action so a triage run can be replayed from its log alone.

Why:
  Triage touches personal mail. Logs must carry enough context (sender
  address, counts, page numbers) to diagnose a failed archive without ever
  containing message subjects or bodies.

How:
  :class:`JsonLogger` writes ``ts``/``lvl``/``msg``/``component`` plus any
  keyword context after passing it through a recursive redaction helper.
  :meth:`JsonLogger.bind` returns a child logger carrying fixed fields such
  as the session identifier.

Interfaces:
  :class:`JsonLogger`, :func:`get_logger`.

Invariants & Safety:
  - ``subject``, ``body``, ``preview`` and ``snippet`` values (and the
    ``subject_contains``/``body_contains`` filter terms) are replaced with
    ``[redacted]`` at any nesting depth, including inside lists.
  - Streams are flushed after every line.
"""
from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"subject", "body", "preview", "snippet", "subject_contains", "body_contains"})


@dataclass
class JsonLogger:
    """Structured JSON logger with automatic redaction.

    What:
      Formats log records as single-line JSON documents tagged with the
      emitting component and any bound context.

    Why:
      Session and executor code log the same identifiers over and over; a
      bound logger keeps call sites short and the schema uniform.

    How:
      Stores the destination stream, the component label and a dictionary of
      bound fields that is merged under every record's own extras.
    """

    stream: Any = field(default_factory=lambda: sys.stdout)
    component: str = "mailsweep"
    context: Dict[str, Any] = field(default_factory=dict)

    def log(self, level: str, message: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        """Serialise ``message`` with bound context and ``extra`` to the stream.

        Args:
          level: Severity label, upper-cased on output.
          message: Short event name (``"source_entered"``, ``"action_failed"``).
          extra: Optional context dictionary, redacted recursively.
        """

        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "lvl": level.upper(),
            "msg": message,
            "component": self.component,
        }
        if self.context:
            payload.update(self._redact(self.context))
        if extra:
            payload.update(self._redact(extra))
        json.dump(payload, self.stream, separators=(",", ":"), default=str)
        self.stream.write("\n")
        self.stream.flush()

    def debug(self, message: str, **kwargs: Any) -> None:
        self.log("DEBUG", message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARN", message, extra=kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, extra=kwargs)

    def bind(self, **kwargs: Any) -> "JsonLogger":
        """Return a child logger that adds ``kwargs`` to every record.

        What:
          Produces a new :class:`JsonLogger` sharing this logger's stream and
          component, with ``kwargs`` layered over the existing bound context.

        Why:
          A triage session tags all of its records with its identifier; the
          executor reuses the session's bound logger so action records line up
          with navigation records.

        How:
          Copies the bound context, updates it with ``kwargs`` and constructs a
          sibling dataclass instance.
        """

        merged = dict(self.context)
        merged.update(kwargs)
        return JsonLogger(stream=self.stream, component=self.component, context=merged)

    @staticmethod
    def _redact(data: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``data`` with sensitive keys masked."""

        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SENSITIVE_KEYS:
                result[key] = REDACTED
            else:
                result[key] = JsonLogger._redact_value(value)
        return result

    @staticmethod
    def _redact_value(value: Any) -> Any:
        if isinstance(value, dict):
            return JsonLogger._redact(value)
        if isinstance(value, (list, tuple)):
            return [JsonLogger._redact_value(item) for item in value]
        if isinstance(value, (set, frozenset)):
            return sorted(JsonLogger._redact_value(item) for item in value)
        return value


def get_logger(component: str, *, stream: Any = None) -> JsonLogger:
    """Construct a :class:`JsonLogger` for ``component``.

    Args:
      component: Logical subsystem name included in every record.
      stream: Optional destination; defaults to ``stdout``.

    Returns:
      Configured :class:`JsonLogger` instance.
    """

    if stream is None:
        return JsonLogger(component=component)
    return JsonLogger(stream=stream, component=component)
