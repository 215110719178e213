"""IMAP implementation of the triage mail gateway.

What:
  Wrap the third-party ``imapclient`` library behind the
  :class:`~mailsweep.gateway.base.MailGateway` protocol: sender aggregation,
  filtered counts and pages, id resolution and bulk flag/move operations on
  the inbox.

Why:
  Direct use of ``imapclient`` exposes sharp edges: mailbox delimiter quirks,
  sequence numbers that shift under concurrent deletes, ``UIDVALIDITY``
  resets and unbounded command rates. Containing them here keeps the session
  and executor backend agnostic.

How:
  - UID mode throughout; message ids handed to the engine are decimal UIDs.
  - Every call reselects the inbox, which also lets the server report new
    mail. A changed ``UIDVALIDITY`` raises
    :class:`~mailsweep.core.errors.StaleReferenceError` from calls that
    consume or issue page ids.
  - Searches are delegated to the server via
    :func:`~mailsweep.gateway.search.build_search`; exact sender addresses
    are post-filtered on the envelope so ``bob@x.org`` never matches
    ``bob@x.org.evil``.
  - Mutations go through :meth:`ImapGateway._throttle` (500 commands per
    minute) and are chunked.
  - Library and socket errors are wrapped in
    :class:`~mailsweep.core.errors.TransportError`.

Interfaces:
  :class:`ImapConfig`, :class:`ImapGateway`.

Invariants & Safety:
  - Only the configured inbox is listed; archive and trash are move targets.
  - Archive and trash mailboxes are created on connect when missing.
  - Message content is never logged.
"""
from __future__ import annotations

import contextlib
import os
import time
from collections import deque
from dataclasses import dataclass
from email.header import decode_header, make_header
from typing import Any, Deque, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from imapclient import DELETED, FLAGGED, SEEN, IMAPClient
from imapclient.exceptions import IMAPClientError

from ..config.loader import RuntimeConfigError, get_runtime_config
from ..config.schema import ImapSettings
from ..core.errors import StaleReferenceError, TransportError
from ..core.filters import FilterExpression, is_exact_address
from ..core.models import Email, MailFolder, MailUpdate, RawSource, UpdatedEmail
from ..utils.logging import JsonLogger, get_logger
from .search import build_search, flatten, needs_utf8

ACTIONS_PER_MINUTE = 500
CHUNK_SIZE = 500
_LIST_FETCH = ["ENVELOPE", "FLAGS", "INTERNALDATE", "BODY.PEEK[TEXT]"]


@dataclass
class ImapConfig:
    """Connection parameters and mailbox names for the IMAP gateway.

    What:
      Captures credentials plus the inbox/archive/trash names. Unset mailbox
      names are filled from the runtime configuration, or from the stock
      ``INBOX``/``Archive``/``Trash`` when no ``imap`` section exists.
    """

    host: str
    username: str
    password: str
    port: int = 993
    ssl: bool = True
    inbox: Optional[str] = None
    archive_mailbox: Optional[str] = None
    trash_mailbox: Optional[str] = None

    def __post_init__(self) -> None:
        if self.inbox is not None and self.archive_mailbox is not None and self.trash_mailbox is not None:
            return
        settings = get_runtime_config().imap
        if self.inbox is None:
            self.inbox = settings.inbox if settings else "INBOX"
        if self.archive_mailbox is None:
            self.archive_mailbox = settings.archive_mailbox if settings else "Archive"
        if self.trash_mailbox is None:
            self.trash_mailbox = settings.trash_mailbox if settings else "Trash"

    @classmethod
    def from_settings(cls, settings: ImapSettings, environ: Optional[Dict[str, str]] = None) -> "ImapConfig":
        """Build a config from the ``imap`` section, reading the password env var.

        Raises:
          RuntimeConfigError: If the password environment variable is unset.
        """

        env = os.environ if environ is None else environ
        password = env.get(settings.password_env)
        if not password:
            raise RuntimeConfigError(f"Environment variable {settings.password_env} is not set")
        return cls(
            host=settings.host,
            username=settings.username,
            password=password,
            port=settings.port,
            ssl=settings.ssl,
            inbox=settings.inbox,
            archive_mailbox=settings.archive_mailbox,
            trash_mailbox=settings.trash_mailbox,
        )


def _text(value: Any) -> str:
    """Decode an envelope field (bytes, possibly RFC 2047 encoded)."""

    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    try:
        return str(make_header(decode_header(value)))
    except (UnicodeError, LookupError, ValueError):
        return value


def _address(addr: Any) -> str:
    mailbox = _text(addr.mailbox)
    host = _text(addr.host)
    return f"{mailbox}@{host}" if host else mailbox


def _addresses(addrs: Optional[Iterable[Any]]) -> Tuple[str, ...]:
    return tuple(_address(addr) for addr in addrs or () if addr.mailbox)


def _sender(envelope: Any) -> Tuple[str, Optional[str]]:
    senders = envelope.from_ if envelope is not None else None
    if not senders:
        return "", None
    first = senders[0]
    return _address(first), (_text(first.name) or None)


def _chunks(items: Sequence[int], size: int = CHUNK_SIZE) -> Iterator[List[int]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


class ImapGateway:
    """Context manager exposing the triage gateway over one IMAP connection.

    What:
      Owns a single ``imapclient.IMAPClient`` connection, mediates inbox
      selection and implements the six gateway calls.

    How:
      Connects lazily in :meth:`__enter__`; every public method wraps its IMAP
      traffic in :meth:`_transport` so failures surface as
      :class:`TransportError` tagged with the operation name.
    """

    def __init__(self, config: ImapConfig, *, logger: Optional[JsonLogger] = None) -> None:
        self._config = config
        self._client: Optional[IMAPClient] = None
        self._delimiter: str = "/"
        self._mailboxes: Set[str] = set()
        self._uidvalidity: Optional[int] = None
        self._stale_pending = False
        self._actions: Deque[float] = deque()
        self._logger = logger or get_logger("mailsweep.imap")

    def __enter__(self) -> "ImapGateway":
        with self._transport("connect"):
            self._client = IMAPClient(self._config.host, port=self._config.port, ssl=self._config.ssl)
            self._client.login(self._config.username, self._config.password)
            self._refresh_mailboxes()
            self._ensure_mailbox(self._config.archive_mailbox)
            self._ensure_mailbox(self._config.trash_mailbox)
            self._select_inbox()
        self._logger.info("imap_connected", host=self._config.host, inbox=self._config.inbox)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._client is None:
            return
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as error:
            self._logger.warning("imap_logout_failed", error=str(error))
        finally:
            self._client = None

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise RuntimeError("IMAP client not connected")
        return self._client

    @property
    def config(self) -> ImapConfig:
        return self._config

    @contextlib.contextmanager
    def _transport(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (IMAPClientError, OSError) as exc:
            self._logger.error("imap_error", operation=operation, error=str(exc))
            raise TransportError(operation, str(exc)) from exc

    # Mailbox housekeeping -----------------------------------------------
    def _refresh_mailboxes(self) -> None:
        self._mailboxes.clear()
        for _flags, delimiter, name in self.client.list_folders():
            if delimiter:
                decoded = delimiter.decode() if isinstance(delimiter, bytes) else str(delimiter)
                if decoded:
                    self._delimiter = decoded
            self._mailboxes.add(name.decode() if isinstance(name, bytes) else str(name))

    def _normalize_path(self, mailbox: str) -> str:
        """Rewrite ``/`` and ``.`` separators to the server delimiter."""

        delimiter = self._delimiter or "/"
        candidate = mailbox.replace("/", delimiter).replace(".", delimiter)
        return delimiter.join(chunk.strip() for chunk in candidate.split(delimiter) if chunk.strip())

    def _ensure_mailbox(self, mailbox: Optional[str]) -> str:
        if not mailbox:
            raise RuntimeConfigError("Mailbox name not configured")
        normalized = self._normalize_path(mailbox)
        if normalized not in self._mailboxes:
            try:
                self.client.create_folder(normalized)
            except IMAPClientError:
                # Some servers refuse CREATE for folders hidden from LIST.
                self._refresh_mailboxes()
            else:
                self._mailboxes.add(normalized)
        return normalized

    def _select_inbox(self, *, strict: bool = False) -> None:
        """Select the inbox and track ``UIDVALIDITY``.

        Raises:
          StaleReferenceError: When ``strict`` and the server reset UIDs since
            the previous strict selection. A reset seen by a non-strict call
            is remembered and raised by the next strict one.
        """

        info = self.client.select_folder(self._config.inbox)
        validity = info.get(b"UIDVALIDITY")
        previous = self._uidvalidity
        self._uidvalidity = validity
        if previous is not None and validity != previous:
            self._logger.warning("uidvalidity_changed", previous=previous, current=validity)
            self._stale_pending = True
        if strict and self._stale_pending:
            self._stale_pending = False
            raise StaleReferenceError(f"UIDVALIDITY changed to {validity}")

    def _throttle(self) -> None:
        """Enforce the per-minute command limit before mutating the mailbox."""

        now = time.monotonic()
        while self._actions and now - self._actions[0] > 60:
            self._actions.popleft()
        if len(self._actions) >= ACTIONS_PER_MINUTE:
            raise TransportError("throttle", "IMAP action rate limit exceeded")
        self._actions.append(now)

    # Searching ----------------------------------------------------------
    def _search(self, filter: FilterExpression) -> List[int]:
        criteria = build_search(filter)
        charset = "UTF-8" if needs_utf8(criteria) else None
        uids = sorted(self.client.search(flatten(criteria), charset=charset), reverse=True)
        sender = filter.from_contains.strip()
        if sender and is_exact_address(sender):
            uids = self._exact_sender(uids, sender.lower())
        return uids

    def _exact_sender(self, uids: List[int], address: str) -> List[int]:
        kept: Set[int] = set()
        for chunk in _chunks(uids):
            for uid, data in self.client.fetch(chunk, ["ENVELOPE"]).items():
                if _sender(data.get(b"ENVELOPE"))[0].lower() == address:
                    kept.add(uid)
        return [uid for uid in uids if uid in kept]

    def _existing(self, uids: Sequence[int]) -> Dict[int, Tuple[bytes, ...]]:
        """Map each still-present UID to its current flags."""

        present: Dict[int, Tuple[bytes, ...]] = {}
        for chunk in _chunks(list(uids)):
            for uid, data in self.client.fetch(chunk, ["FLAGS"]).items():
                present[uid] = tuple(data.get(b"FLAGS", ()))
        return present

    # Gateway surface ----------------------------------------------------
    def list_top_sources(self, limit: int) -> List[RawSource]:
        """Aggregate inbox senders by lower-cased address."""

        with self._transport("list_top_sources"):
            self._select_inbox()
            uids = self.client.search(["ALL"])
            counts: Dict[str, int] = {}
            names: Dict[str, Tuple[str, Optional[str]]] = {}
            for chunk in _chunks(sorted(uids, reverse=True)):
                for data in self.client.fetch(chunk, ["ENVELOPE"]).values():
                    address, name = _sender(data.get(b"ENVELOPE"))
                    if not address:
                        continue
                    key = address.lower()
                    counts[key] = counts.get(key, 0) + 1
                    stored = names.get(key)
                    if stored is None or (stored[1] is None and name):
                        names[key] = (stored[0] if stored else address, name)
        ordered = sorted(counts, key=lambda key: (-counts[key], key))[:limit]
        return [RawSource(address=names[key][0], display_name=names[key][1], count=counts[key]) for key in ordered]

    def count_emails(self, filter: FilterExpression) -> int:
        with self._transport("count_emails"):
            self._select_inbox()
            return len(self._search(filter))

    def list_emails(self, filter: FilterExpression, offset: int, limit: int) -> List[Email]:
        """Fetch one page, newest UID first."""

        with self._transport("list_emails"):
            self._select_inbox(strict=True)
            page = self._search(filter)[offset : offset + limit]
            if not page:
                return []
            response = self.client.fetch(page, _LIST_FETCH)
        emails: List[Email] = []
        for uid in page:
            data = response.get(uid)
            if data is None:
                continue
            emails.append(self._to_email(uid, data))
        return emails

    def list_all_email_ids(self, filter: FilterExpression) -> List[str]:
        with self._transport("list_all_email_ids"):
            self._select_inbox()
            return [str(uid) for uid in self._search(filter)]

    def bulk_update(self, ids: Sequence[str], update: MailUpdate) -> List[UpdatedEmail]:
        """Apply flag changes, then an optional move, to the given UIDs."""

        uids = [int(email_id) for email_id in ids]
        with self._transport("bulk_update"):
            self._select_inbox(strict=True)
            present = self._existing(uids)
            targets = [uid for uid in uids if uid in present]
            for chunk in _chunks(targets):
                if update.is_read is not None:
                    self._throttle()
                    if update.is_read:
                        self.client.add_flags(chunk, [SEEN])
                    else:
                        self.client.remove_flags(chunk, [SEEN])
                if update.is_starred is not None:
                    self._throttle()
                    if update.is_starred:
                        self.client.add_flags(chunk, [FLAGGED])
                    else:
                        self.client.remove_flags(chunk, [FLAGGED])
                destination = self._destination(update.folder)
                if destination is not None:
                    self._throttle()
                    self.client.move(chunk, destination)
        self._logger.info(
            "bulk_update",
            requested=len(uids),
            applied=len(targets),
            folder=update.folder.value if update.folder else None,
        )
        results: List[UpdatedEmail] = []
        for uid in targets:
            flags = present[uid]
            results.append(
                UpdatedEmail(
                    id=str(uid),
                    is_read=update.is_read if update.is_read is not None else SEEN in flags,
                    is_starred=update.is_starred if update.is_starred is not None else FLAGGED in flags,
                    folder=update.folder or MailFolder.INBOX,
                )
            )
        return results

    def bulk_delete(self, ids: Sequence[str]) -> int:
        """Move the given UIDs to the trash mailbox."""

        uids = [int(email_id) for email_id in ids]
        with self._transport("bulk_delete"):
            self._select_inbox(strict=True)
            present = self._existing(uids)
            targets = [uid for uid in uids if uid in present]
            trash = self._ensure_mailbox(self._config.trash_mailbox)
            purge = trash == self._normalize_path(self._config.inbox)
            for chunk in _chunks(targets):
                self._throttle()
                if purge:
                    self.client.add_flags(chunk, [DELETED])
                    self.client.expunge(chunk)
                else:
                    self.client.move(chunk, trash)
        self._logger.info("bulk_delete", requested=len(uids), applied=len(targets))
        return len(targets)

    def _destination(self, folder: Optional[MailFolder]) -> Optional[str]:
        if folder is None or folder is MailFolder.INBOX:
            return None
        if folder is MailFolder.ARCHIVE:
            return self._ensure_mailbox(self._config.archive_mailbox)
        return self._ensure_mailbox(self._config.trash_mailbox)

    def _to_email(self, uid: int, data: Dict[bytes, Any]) -> Email:
        envelope = data.get(b"ENVELOPE")
        address, name = _sender(envelope)
        flags = tuple(data.get(b"FLAGS", ()))
        body = data.get(b"BODY[TEXT]") or b""
        keywords = frozenset(
            (flag.decode() if isinstance(flag, bytes) else str(flag))
            for flag in flags
            if not (flag.startswith(b"\\") if isinstance(flag, bytes) else str(flag).startswith("\\"))
        )
        return Email(
            id=str(uid),
            from_address=address,
            from_name=name,
            to=_addresses(getattr(envelope, "to", None)),
            cc=_addresses(getattr(envelope, "cc", None)),
            bcc=_addresses(getattr(envelope, "bcc", None)),
            subject=_text(getattr(envelope, "subject", None)),
            body=body.decode("utf-8", errors="replace") if isinstance(body, bytes) else str(body),
            folder=MailFolder.INBOX,
            is_read=SEEN in flags,
            is_starred=FLAGGED in flags,
            tag_ids=keywords,
            received_at=data.get(b"INTERNALDATE"),
        )
