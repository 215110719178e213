"""Facade for the mail gateway layer.

What:
  Surface the :class:`MailGateway` protocol, the IMAP implementation and its
  configuration envelope.

Why:
  Call sites depend on the protocol, not on a backend; keeping the import
  surface small lets the IMAP details evolve freely.

Interfaces:
  ``MailGateway``, ``ImapConfig``, ``ImapGateway``, ``build_search``.
"""

from .base import MailGateway
from .imap import ImapConfig, ImapGateway
from .search import build_search

__all__ = ["MailGateway", "ImapConfig", "ImapGateway", "build_search"]
