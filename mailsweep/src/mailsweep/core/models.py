"""Typed records exchanged between the gateway and the triage session.

What:
  Define the value objects that flow through triage: ranked senders, page
  rows, bulk update payloads and their confirmations.

Why:
  The gateway may be backed by IMAP, a REST service or an in-memory fake.
  Fixing the record shapes here means the session never inspects ad hoc
  dictionaries, and every optional field has an explicit default.

How:
  Frozen dataclasses for snapshots (they are replaced, never edited) and a
  small :class:`MailFolder` enumeration for dispositions.

Interfaces:
  :class:`MailFolder`, :class:`RawSource`, :class:`Source`, :class:`Email`,
  :class:`MailUpdate`, :class:`UpdatedEmail`.

Invariants & Safety:
  - ``Source.matching_count`` and ``RawSource.count`` are never negative.
  - A :class:`MailUpdate` always carries at least one change.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Optional, Tuple


class MailFolder(str, Enum):
    """Logical folders a message can be moved between."""

    INBOX = "INBOX"
    ARCHIVE = "ARCHIVE"
    TRASH = "TRASH"


@dataclass(frozen=True)
class RawSource:
    """Sender aggregate as returned by :meth:`MailGateway.list_top_sources`."""

    address: str
    display_name: Optional[str]
    count: int

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError("count must be non-negative")


@dataclass(frozen=True)
class Source:
    """Ranked sender snapshot used by the session.

    What:
      A distinct sender address with its display name and the number of inbox
      messages it currently accounts for.

    Why:
      ``address`` is the identity key when reconciling a refreshed ranking
      with the previous one; comparing via :attr:`key` makes that
      case-insensitive.
    """

    address: str
    display_name: Optional[str]
    matching_count: int

    def __post_init__(self) -> None:
        if self.matching_count < 0:
            raise ValueError("matching_count must be non-negative")

    @property
    def key(self) -> str:
        return self.address.lower()

    @property
    def label(self) -> str:
        return self.display_name or self.address

    @classmethod
    def from_raw(cls, raw: RawSource) -> "Source":
        return cls(address=raw.address, display_name=raw.display_name, matching_count=raw.count)


@dataclass(frozen=True)
class Email:
    """One row of the current triage page.

    Only ``id`` is required by the engine; the remaining fields feed filter
    evaluation in the in-memory gateway and the terminal listing.
    """

    id: str
    from_address: str = ""
    from_name: Optional[str] = None
    to: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    bcc: Tuple[str, ...] = ()
    subject: str = ""
    body: str = ""
    folder: MailFolder = MailFolder.INBOX
    is_read: bool = False
    is_starred: bool = False
    tag_ids: FrozenSet[str] = field(default_factory=frozenset)
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class MailUpdate:
    """Changes requested by :meth:`MailGateway.bulk_update`."""

    is_read: Optional[bool] = None
    is_starred: Optional[bool] = None
    folder: Optional[MailFolder] = None

    def __post_init__(self) -> None:
        if self.is_read is None and self.is_starred is None and self.folder is None:
            raise ValueError("MailUpdate requires at least one change")


@dataclass(frozen=True)
class UpdatedEmail:
    """Confirmation row returned by :meth:`MailGateway.bulk_update`."""

    id: str
    is_read: bool
    folder: MailFolder
    is_starred: bool = False
