"""Protocol describing the mail gateway consumed by the triage engine.

What:
  Formalise the six calls the session and executor make against the mail
  backend.

Why:
  The engine is tested against an in-memory fake and run against IMAP; a
  structural protocol keeps both interchangeable without inheritance.

How:
  :class:`MailGateway` annotates each method signature and documents the
  error contract every implementation must honour.

Interfaces:
  :class:`MailGateway`.

Invariants & Safety:
  - Remote failures surface as :class:`~mailsweep.core.errors.TransportError`;
    invalidated identifiers as
    :class:`~mailsweep.core.errors.StaleReferenceError`.
  - Implementations never mutate mail outside ``bulk_update`` and
    ``bulk_delete``.
"""
from __future__ import annotations

from typing import List, Protocol, Sequence

from ..core.filters import FilterExpression
from ..core.models import Email, MailUpdate, RawSource, UpdatedEmail


class MailGateway(Protocol):
    """Structural interface for triage backends."""

    def list_top_sources(self, limit: int) -> List[RawSource]:
        """Return up to ``limit`` inbox senders with their message counts.

        Senders are grouped case-insensitively by address. The order of the
        result is not relied upon; the engine ranks it.
        """

    def count_emails(self, filter: FilterExpression) -> int:
        """Return the number of inbox messages matching ``filter``."""

    def list_emails(self, filter: FilterExpression, offset: int, limit: int) -> List[Email]:
        """Return one page of inbox messages matching ``filter``, newest first."""

    def list_all_email_ids(self, filter: FilterExpression) -> List[str]:
        """Return every matching id, ignoring pagination, in listing order."""

    def bulk_update(self, ids: Sequence[str], update: MailUpdate) -> List[UpdatedEmail]:
        """Apply ``update`` to ``ids`` and return the resulting state per id.

        Ids that no longer exist are skipped; the result may be shorter than
        ``ids``.
        """

    def bulk_delete(self, ids: Sequence[str]) -> int:
        """Move ``ids`` to trash (or purge those already there).

        Returns:
          Number of messages affected.
        """
