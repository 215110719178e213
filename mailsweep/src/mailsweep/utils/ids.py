"""Identifier helpers for triage sessions.

What:
  Generate the identifiers used to correlate log lines of one triage run.

Why:
  A user may start over several times in one process; each fresh session
  gets its own identifier so log consumers can split the runs apart.

How:
  Combine a UTC timestamp with a short random suffix.

Interfaces:
  :func:`new_session_id`.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timezone


def new_session_id() -> str:
    """Return a sortable, collision-resistant session identifier.

    Returns:
      Identifier such as ``20240101T000000Z-1a2b3c``.
    """

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"{timestamp}-{suffix}"
