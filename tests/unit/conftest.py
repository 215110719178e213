"""Pytest fixtures for unit tests.

What:
  Make ``tests/unit`` importable so suites can ``from fakes import ...`` and
  expose fixtures for the in-memory gateway, a quiet logger and an
  :class:`~mailsweep.gateway.imap.ImapGateway` wired to the fake IMAP backend.

Why:
  Session and executor tests need a deterministic gateway with call
  recording and failure injection; IMAP tests need the real gateway code to
  run without a server.

How:
  Append the unit directory to ``sys.path`` and monkeypatch
  ``mailsweep.gateway.imap.IMAPClient`` with a factory returning the fake
  backend.

Interfaces:
  :func:`gateway`, :func:`log_stream`, :func:`logger`, :func:`imap_gateway`.

Invariants & Safety:
  - Every test receives fresh fakes; no state leaks across tests.
"""

import io
import sys
from pathlib import Path

import pytest

from mailsweep.gateway.imap import ImapConfig, ImapGateway
from mailsweep.utils.logging import get_logger

UNIT_DIR = Path(__file__).resolve().parent
if str(UNIT_DIR) not in sys.path:
    sys.path.insert(0, str(UNIT_DIR))

from fakes import FakeGateway, FakeImapBackend


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream):
    return get_logger("mailsweep.test", stream=log_stream)


@pytest.fixture
def imap_gateway(monkeypatch: pytest.MonkeyPatch, logger):
    """Yield ``(ImapGateway, FakeImapBackend)`` with a connected gateway.

    How:
      Replaces the ``IMAPClient`` constructor used by the gateway module,
      builds an :class:`ImapConfig` with dummy credentials (mailbox names come
      from the canned runtime configuration) and enters the gateway context so
      the login/bootstrap/logout flow mirrors production.
    """

    backend = FakeImapBackend()
    monkeypatch.setattr("mailsweep.gateway.imap.IMAPClient", lambda host, port, ssl: backend)
    config = ImapConfig(host="localhost", username="user", password="pass")
    with ImapGateway(config, logger=logger) as client:
        yield client, backend
