"""Expose the public utility surface for MailSweep.

What:
  Re-export the logging and identifier helpers used by the session, the
  executor and the CLI.

Interfaces:
  ``JsonLogger``, ``get_logger``, ``new_session_id``.
"""

from .ids import new_session_id
from .logging import JsonLogger, get_logger

__all__ = [
    "JsonLogger",
    "get_logger",
    "new_session_id",
]
