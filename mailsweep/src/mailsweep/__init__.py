"""
Module: mailsweep.__init__

What:
  Package root for MailSweep, a sender-by-sender inbox triage tool.

Why:
  Importers (the CLI, tests, embedding front ends) rely on a stable set of
  subpackages while the internal layout evolves.

Interfaces:
  - config: Configuration schema, loader and preference store.
  - core: Filters, ranking, paging, selection, the triage session and the
    bulk action executor.
  - gateway: Mail gateway protocol and the IMAP implementation.
  - utils: Structured logging and identifiers.

Invariants:
  - The package never re-exports helpers that log raw message content.
"""

__all__ = [
    "config",
    "core",
    "gateway",
    "utils",
]

__version__ = "0.1.0"
