"""In-memory backends used by unit tests.

What:
  Provide :class:`FakeGateway`, a dictionary-backed
  :class:`~mailsweep.gateway.base.MailGateway`, :class:`DeferredSubmit` for
  driving refresh work by hand, and :class:`FakeImapBackend`, a drop-in
  replacement for :class:`imapclient.IMAPClient`.

Why:
  Session and executor tests assert on exact gateway traffic ("one
  ``list_all_email_ids`` call, one ``bulk_delete`` with 120 ids") and need to
  inject failures at precise points. IMAP tests need the real gateway code to
  run against predictable server responses.

How:
  :class:`FakeGateway` evaluates filters with
  :func:`mailsweep.core.filters.matches`, records each call in ``calls`` and
  raises whatever was queued with :meth:`FakeGateway.fail`.
  :class:`FakeImapBackend` keeps per-mailbox dictionaries of
  :class:`_MessageRecord` and answers ``search``/``fetch`` with real
  ``imapclient`` response types.

Invariants & Safety:
  - UIDs increment monotonically per backend instance.
  - Nothing touches the network or the filesystem.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from imapclient.exceptions import IMAPClientError
from imapclient.response_types import Address, Envelope

from mailsweep.core.errors import TransportError
from mailsweep.core.filters import FilterExpression, matches
from mailsweep.core.models import Email, MailFolder, MailUpdate, RawSource, UpdatedEmail

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_emails(
    address: str,
    count: int,
    *,
    name: Optional[str] = None,
    prefix: Optional[str] = None,
    subject: str = "Hello",
    **fields,
) -> List[Email]:
    """Build ``count`` inbox emails from ``address`` with ids ``prefix-N``."""

    stem = prefix or address.split("@")[0]
    return [
        Email(
            id=f"{stem}-{index}",
            from_address=address,
            from_name=name,
            subject=f"{subject} {index}",
            to=("me@example.com",),
            **fields,
        )
        for index in range(1, count + 1)
    ]


class FakeGateway:
    """Dictionary-backed mail gateway with call recording.

    Emails are listed in insertion order; callers insert newest first.
    """

    def __init__(self, emails: Iterable[Email] = ()) -> None:
        self._emails: Dict[str, Email] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self._failures: Dict[str, List[Exception]] = {}
        self.add(emails)

    def add(self, emails: Iterable[Email]) -> None:
        for email in emails:
            self._emails[email.id] = email

    def email(self, email_id: str) -> Email:
        return self._emails[email_id]

    def inbox(self) -> List[Email]:
        return [email for email in self._emails.values() if email.folder is MailFolder.INBOX]

    def fail(self, operation: str, exc: Optional[Exception] = None, *, times: int = 1) -> None:
        """Queue ``exc`` (a :class:`TransportError` by default) for ``operation``."""

        error = exc or TransportError(operation, "connection reset")
        self._failures.setdefault(operation, []).extend([error] * times)

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def count_calls(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, args))
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _matching(self, filter: FilterExpression) -> List[Email]:
        return [email for email in self.inbox() if matches(filter, email)]

    def list_top_sources(self, limit: int) -> List[RawSource]:
        self._record("list_top_sources", limit)
        counts: Dict[str, int] = {}
        first: Dict[str, Email] = {}
        for email in self.inbox():
            key = email.from_address.lower()
            counts[key] = counts.get(key, 0) + 1
            first.setdefault(key, email)
        ordered = sorted(counts, key=lambda key: -counts[key])[:limit]
        return [
            RawSource(address=first[key].from_address, display_name=first[key].from_name, count=counts[key])
            for key in ordered
        ]

    def count_emails(self, filter: FilterExpression) -> int:
        self._record("count_emails", filter)
        return len(self._matching(filter))

    def list_emails(self, filter: FilterExpression, offset: int, limit: int) -> List[Email]:
        self._record("list_emails", filter, offset, limit)
        return self._matching(filter)[offset : offset + limit]

    def list_all_email_ids(self, filter: FilterExpression) -> List[str]:
        self._record("list_all_email_ids", filter)
        return [email.id for email in self._matching(filter)]

    def bulk_update(self, ids: Sequence[str], update: MailUpdate) -> List[UpdatedEmail]:
        self._record("bulk_update", list(ids), update)
        results: List[UpdatedEmail] = []
        for email_id in ids:
            email = self._emails.get(email_id)
            if email is None:
                continue
            changes = {}
            if update.is_read is not None:
                changes["is_read"] = update.is_read
            if update.is_starred is not None:
                changes["is_starred"] = update.is_starred
            if update.folder is not None:
                changes["folder"] = update.folder
            email = replace(email, **changes)
            self._emails[email_id] = email
            results.append(
                UpdatedEmail(id=email.id, is_read=email.is_read, folder=email.folder, is_starred=email.is_starred)
            )
        return results

    def bulk_delete(self, ids: Sequence[str]) -> int:
        self._record("bulk_delete", list(ids))
        affected = 0
        for email_id in ids:
            email = self._emails.get(email_id)
            if email is None:
                continue
            affected += 1
            if email.folder is MailFolder.TRASH:
                del self._emails[email_id]
            else:
                self._emails[email_id] = replace(email, folder=MailFolder.TRASH)
        return affected


class DeferredSubmit:
    """``submit`` replacement that queues refresh work until released."""

    def __init__(self) -> None:
        self.pending: List[Callable[[], None]] = []

    def __call__(self, task: Callable[[], None]) -> None:
        self.pending.append(task)

    def run(self, index: int) -> None:
        self.pending.pop(index)()

    def run_all(self) -> None:
        while self.pending:
            self.pending.pop(0)()


@dataclass
class _MessageRecord:
    """One stored IMAP message."""

    uid: int
    from_address: str
    from_name: Optional[str]
    subject: str
    body: str
    to: Tuple[str, ...] = ()
    cc: Tuple[str, ...] = ()
    flags: Set[bytes] = field(default_factory=set)
    internaldate: datetime = BASE_TIME

    @staticmethod
    def _address(address: str, name: Optional[str] = None) -> Address:
        mailbox, _, host = address.partition("@")
        return Address(name.encode() if name else None, None, mailbox.encode(), host.encode() or None)

    def envelope(self) -> Envelope:
        return Envelope(
            self.internaldate,
            self.subject.encode(),
            (self._address(self.from_address, self.from_name),),
            None,
            None,
            tuple(self._address(addr) for addr in self.to) or None,
            tuple(self._address(addr) for addr in self.cc) or None,
            None,
            None,
            b"<fake@example.test>",
        )

    def header_text(self, key: str) -> str:
        if key == "FROM":
            return f"{self.from_name or ''} <{self.from_address}>"
        if key == "TO":
            return ", ".join(self.to)
        if key == "CC":
            return ", ".join(self.cc)
        if key == "SUBJECT":
            return self.subject
        if key == "BODY":
            return self.body
        return ""


class FakeImapBackend:
    """Subset of :class:`imapclient.IMAPClient` backed by dictionaries."""

    def __init__(self, mailboxes: Sequence[str] = ("INBOX",), uidvalidity: int = 1) -> None:
        self.mailboxes: Dict[str, Dict[int, _MessageRecord]] = {name: {} for name in mailboxes}
        self.uidvalidity = uidvalidity
        self.selected: Optional[str] = None
        self.logged_in = False
        self.commands: List[Tuple[str, tuple]] = []
        self._next_uid = 1
        self._failures: Dict[str, IMAPClientError] = {}

    # Test helpers -------------------------------------------------------
    def add_message(
        self,
        from_address: str,
        *,
        mailbox: str = "INBOX",
        from_name: Optional[str] = None,
        subject: str = "Hello",
        body: str = "Body",
        to: Sequence[str] = ("me@example.com",),
        cc: Sequence[str] = (),
        flags: Iterable[bytes] = (),
    ) -> int:
        uid = self._next_uid
        self._next_uid += 1
        self.mailboxes.setdefault(mailbox, {})[uid] = _MessageRecord(
            uid=uid,
            from_address=from_address,
            from_name=from_name,
            subject=subject,
            body=body,
            to=tuple(to),
            cc=tuple(cc),
            flags=set(flags),
            internaldate=BASE_TIME + timedelta(minutes=uid),
        )
        return uid

    def fail_on(self, method: str, message: str = "server said no") -> None:
        self._failures[method] = IMAPClientError(message)

    def _check(self, method: str, *args) -> None:
        self.commands.append((method, args))
        error = self._failures.pop(method, None)
        if error is not None:
            raise error

    def _current(self) -> Dict[int, _MessageRecord]:
        if self.selected is None:
            raise IMAPClientError("no mailbox selected")
        return self.mailboxes[self.selected]

    # IMAPClient surface -------------------------------------------------
    def login(self, username: str, password: str) -> None:
        self._check("login", username)
        self.logged_in = True

    def logout(self) -> None:
        self.logged_in = False

    def list_folders(self):
        return [((b"\\HasNoChildren",), b"/", name) for name in self.mailboxes]

    def create_folder(self, name: str) -> None:
        self._check("create_folder", name)
        self.mailboxes.setdefault(name, {})

    def select_folder(self, name: str, readonly: bool = False) -> dict:
        self._check("select_folder", name)
        if name not in self.mailboxes:
            raise IMAPClientError(f"no such mailbox {name}")
        self.selected = name
        return {b"UIDVALIDITY": self.uidvalidity, b"EXISTS": len(self.mailboxes[name])}

    def search(self, criteria, charset=None) -> List[int]:
        self._check("search", tuple(criteria))
        tokens = list(criteria)
        records = list(self._current().values())
        index = 0
        while index < len(tokens):
            key = tokens[index]
            if key == "ALL":
                index += 1
                continue
            value = tokens[index + 1].lower()
            if key == "KEYWORD":
                records = [record for record in records if value.encode() in {f.lower() for f in record.flags}]
            else:
                records = [record for record in records if value in record.header_text(key).lower()]
            index += 2
        return [record.uid for record in records]

    def fetch(self, uids, data) -> Dict[int, dict]:
        self._check("fetch", tuple(uids), tuple(data))
        mailbox = self._current()
        response: Dict[int, dict] = {}
        for uid in uids:
            record = mailbox.get(uid)
            if record is None:
                continue
            response[uid] = {
                b"SEQ": uid,
                b"ENVELOPE": record.envelope(),
                b"FLAGS": tuple(sorted(record.flags)),
                b"INTERNALDATE": record.internaldate,
                b"BODY[TEXT]": record.body.encode(),
            }
        return response

    def add_flags(self, uids, flags) -> None:
        self._check("add_flags", tuple(uids), tuple(flags))
        for uid in uids:
            if uid in self._current():
                self._current()[uid].flags.update(flags)

    def remove_flags(self, uids, flags) -> None:
        self._check("remove_flags", tuple(uids), tuple(flags))
        for uid in uids:
            if uid in self._current():
                self._current()[uid].flags.difference_update(flags)

    def move(self, uids, destination: str) -> None:
        self._check("move", tuple(uids), destination)
        source = self._current()
        target = self.mailboxes.setdefault(destination, {})
        for uid in uids:
            record = source.pop(uid, None)
            if record is None:
                continue
            record.uid = self._next_uid
            self._next_uid += 1
            target[record.uid] = record

    def expunge(self, messages=None) -> None:
        self._check("expunge", tuple(messages or ()))
        mailbox = self._current()
        for uid in list(messages or mailbox):
            record = mailbox.get(uid)
            if record is not None and b"\\Deleted" in record.flags:
                del mailbox[uid]
