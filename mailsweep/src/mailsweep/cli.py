"""MailSweep command-line interface.

What:
  Provide a Typer-based entry point with two commands: ``sources`` prints the
  ranked senders of the inbox, ``triage`` runs the interactive
  sender-by-sender walk.

Why:
  The triage engine is UI agnostic; the terminal front end is the thinnest
  possible layer that turns typed commands into session intents and renders
  the session read-outs after each one.

How:
  Load the runtime configuration, open the IMAP gateway, build a
  :class:`~mailsweep.core.session.TriageSession` (plus the preference store
  and a :class:`~mailsweep.core.executor.BulkActionExecutor` for ``triage``)
  and loop: render, print pending notices, read a command, dispatch it to the
  handler table of the current step.

Interfaces:
  ``app`` (Typer application), ``sources``, ``triage``, ``main``.

Invariants & Safety:
  - Exit codes follow shell expectations (``0`` success, ``1`` failure).
  - Configuration and connection failures exit with ``1``; gateway failures
    during triage are shown as notices and the loop continues.
  - Session logs go to a file under ``paths.state_dir`` (or stderr with
    ``--verbose``) so JSON lines never interleave with the listing.
"""
from __future__ import annotations

import contextlib
import logging
import shlex
import sys
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional, Tuple

import typer

from .config.loader import RuntimeConfigError, load_runtime_config
from .config.preferences import PreferenceStore
from .config.schema import RuntimeConfig
from .core.errors import TransportError
from .core.executor import ActionOutcome, BulkActionExecutor
from .core.rules import RuleAction
from .core.session import TriageSession, TriageStep
from .gateway.imap import ImapConfig, ImapGateway
from .utils.logging import JsonLogger, get_logger

app = typer.Typer(help="Sender-by-sender inbox triage")

LOGGER = logging.getLogger("mailsweep.cli")

LOG_FILENAME = "mailsweep.log"
DEFAULT_SOURCE_LIMIT = 10

_FILTER_FIELDS = {
    "from": "from_contains",
    "to": "to_contains",
    "cc": "cc_contains",
    "bcc": "bcc_contains",
    "subject": "subject_contains",
    "body": "body_contains",
}


def _load_runtime(config_path: Optional[Path]) -> RuntimeConfig:
    try:
        return load_runtime_config(config_path, reload=config_path is not None)
    except RuntimeConfigError as exc:
        LOGGER.error("runtime_load_failed: %s", exc)
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@contextlib.contextmanager
def _connect(runtime: RuntimeConfig, logger: JsonLogger) -> Iterator[ImapGateway]:
    """Open the IMAP gateway described by ``runtime`` or exit with ``1``."""

    if runtime.imap is None:
        typer.echo("error: configuration has no imap section", err=True)
        raise typer.Exit(code=1)
    try:
        config = ImapConfig.from_settings(runtime.imap)
    except RuntimeConfigError as exc:
        LOGGER.error("imap_config_failed: %s", exc)
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    gateway = ImapGateway(config, logger=logger)
    try:
        with gateway:
            yield gateway
    except TransportError as exc:
        LOGGER.error("imap_connect_failed: %s", exc)
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@contextlib.contextmanager
def _session_logger(runtime: RuntimeConfig, verbose: bool) -> Iterator[JsonLogger]:
    if verbose:
        yield get_logger("mailsweep", stream=sys.stderr)
        return
    state_dir = Path(runtime.paths.state_dir).expanduser()
    state_dir.mkdir(parents=True, exist_ok=True)
    with (state_dir / LOG_FILENAME).open("a", encoding="utf-8") as handle:
        yield get_logger("mailsweep", stream=handle)


# Rendering --------------------------------------------------------------
def _flush_notices(session: TriageSession) -> None:
    for notice in session.notices:
        prefix = "!" if notice.level == "error" else "*"
        typer.echo(f"{prefix} {notice.message}")
    while session.notices:
        session.dismiss_notice(0)


def _render_summary(session: TriageSession) -> None:
    sources = session.sources
    typer.echo(f"Top {len(sources)} senders ({session.total_source_emails} emails)")
    completed = session.completed_source_indices
    for index, source in enumerate(sources):
        mark = "x" if index in completed else " "
        typer.echo(f"{index + 1:>3}. [{mark}] {source.label:<40} {source.matching_count:>6}")
    if sources:
        typer.echo(f"Progress: {session.progress_percent}%  processed: {session.processed_count}")


def _render_processing(session: TriageSession) -> None:
    source = session.current_source
    if source is None:
        return
    typer.echo(
        f"Sender {session.current_source_index + 1}/{len(session.sources)}: "
        f"{source.label} <{source.address}> ({session.progress_percent}%)"
    )
    parts = [f"{name}={value}" for name, value in session.filter.constraints()]
    if session.filter.tag_ids:
        parts.append("tags=" + ",".join(sorted(session.filter.tag_ids)))
    typer.echo(f"Filter: {', '.join(parts) or '(none)'}")
    window = session.window
    typer.echo(
        f"Page {window.page_index}/{window.total_pages}  "
        f"{window.first_item_ordinal}-{window.last_item_ordinal} of {session.total_count}  "
        f"selected: {len(session.selection)}  processed: {session.processed_count}"
    )
    selected = session.selection
    for row, email in enumerate(session.emails, start=1):
        mark = "x" if email.id in selected else " "
        unread = " " if email.is_read else "N"
        star = "*" if email.is_starred else " "
        typer.echo(f"{row:>3}. [{mark}] {unread}{star} {email.from_address:<32} {email.subject}")


def _render_completed(session: TriageSession) -> None:
    typer.echo(
        f"Done: {len(session.completed_source_indices)}/{len(session.sources)} senders, "
        f"{session.processed_count} emails processed"
    )


def _render(session: TriageSession) -> None:
    if session.step is TriageStep.SUMMARY:
        _render_summary(session)
    elif session.step is TriageStep.PROCESSING:
        _render_processing(session)
    elif session.step is TriageStep.COMPLETED:
        _render_completed(session)


def _report(outcome: ActionOutcome) -> None:
    if outcome.noop:
        typer.echo(f"{outcome.action}: nothing to do")


# Command handlers -------------------------------------------------------
Handler = Callable[[TriageSession, BulkActionExecutor, str], None]


def _index(argument: str) -> int:
    """Parse a 1-based index typed by the user."""

    if not argument:
        raise ValueError("an index is required")
    return int(argument) - 1


def _choose(
    session: TriageSession,
    executor: BulkActionExecutor,
    argument: str,
    *,
    default_limit: int = DEFAULT_SOURCE_LIMIT,
) -> None:
    session.choose(int(argument) if argument else default_limit)


def _toggle_row(session: TriageSession, executor: BulkActionExecutor, argument: str) -> None:
    emails = session.emails
    for token in argument.replace(",", " ").split():
        row = _index(token)
        if not 0 <= row < len(emails):
            raise IndexError(f"row {token} is not on this page")
        session.toggle(emails[row].id)


def _set_filter(session: TriageSession, executor: BulkActionExecutor, argument: str) -> None:
    changes: Dict[str, object] = {}
    for token in shlex.split(argument):
        name, sep, value = token.partition("=")
        if not sep:
            raise ValueError(f"expected field=value, got {token!r}")
        if name == "tag":
            changes["tag_ids"] = {tag for tag in value.split(",") if tag}
        elif name in _FILTER_FIELDS:
            changes[_FILTER_FIELDS[name]] = value
        else:
            raise ValueError(f"unknown filter field {name!r}")
    session.update_filter(**changes)


def _draft_rule(session: TriageSession, executor: BulkActionExecutor, argument: str) -> None:
    draft = session.draft_rule(RuleAction(argument or RuleAction.ARCHIVE.value))
    if draft is None:
        typer.echo("no filter to build a rule from")
        return
    typer.echo(f"Rule: {draft.name}")
    for name, value in draft.conditions.items():
        typer.echo(f"  if {name} {value}")
    for action in draft.actions:
        typer.echo(f"  then {action}")


_SELECTING: Dict[str, Tuple[str, Handler]] = {
    "c": ("choose <n>: rank the top n senders", _choose),
}

_SUMMARY: Dict[str, Tuple[str, Handler]] = {
    "s": ("start with the first sender", lambda s, e, a: s.start()),
    "j": ("jump <n>: process sender n", lambda s, e, a: s.jump_to(_index(a))),
    "r": ("refresh sender counts", lambda s, e, a: s.refresh_sources("manual")),
    "x": ("start over", lambda s, e, a: s.reset()),
}

_PROCESSING: Dict[str, Tuple[str, Handler]] = {
    "n": ("next sender", lambda s, e, a: s.next()),
    "p": ("previous sender", lambda s, e, a: s.prev()),
    "b": ("back to the summary", lambda s, e, a: s.back()),
    "]": ("next page", lambda s, e, a: s.next_page()),
    "[": ("previous page", lambda s, e, a: s.previous_page()),
    "g": ("go <n>: go to page n", lambda s, e, a: s.go_to_page(_index(a) + 1)),
    "t": ("toggle <rows>: select or unselect rows", _toggle_row),
    "a": ("select or unselect the whole page", lambda s, e, a: s.toggle_all()),
    "m": ("mark selected read", lambda s, e, a: _report(e.mark_read(True))),
    "u": ("mark selected unread", lambda s, e, a: _report(e.mark_read(False))),
    "*": ("star selected", lambda s, e, a: _report(e.star(True))),
    "e": ("archive selected", lambda s, e, a: _report(e.archive())),
    "d": ("delete selected", lambda s, e, a: _report(e.delete())),
    "M": ("mark everything matching read", lambda s, e, a: _report(e.mark_all_read())),
    "E": ("archive everything matching and move on", lambda s, e, a: _report(e.archive_all())),
    "D": ("delete everything matching and move on", lambda s, e, a: _report(e.delete_all())),
    "f": ("filter field=value ... (from, to, cc, bcc, subject, body, tag)", _set_filter),
    "c": ("clear the filter", lambda s, e, a: s.clear_filter()),
    "z": ("size <n>: set the page size", lambda s, e, a: s.set_page_size(int(a))),
    "r": ("refresh", lambda s, e, a: s.refresh("manual")),
    "rule": ("rule [archive|delete|mark_read|star]: draft a rule", _draft_rule),
}

_COMPLETED: Dict[str, Tuple[str, Handler]] = {
    "x": ("start over", lambda s, e, a: s.reset()),
}

_HANDLERS = {
    TriageStep.SELECTING: _SELECTING,
    TriageStep.SUMMARY: _SUMMARY,
    TriageStep.PROCESSING: _PROCESSING,
    TriageStep.COMPLETED: _COMPLETED,
}


def _help(step: TriageStep) -> None:
    for command, (text, _handler) in _HANDLERS[step].items():
        typer.echo(f"  {command:<5} {text}")
    typer.echo("  q     quit")


def run_loop(
    session: TriageSession,
    executor: BulkActionExecutor,
    *,
    default_limit: int = DEFAULT_SOURCE_LIMIT,
) -> None:
    """Read commands until ``q`` or end of input.

    ``default_limit`` is the sender count used by a bare ``c`` after a reset.
    """

    handlers = dict(_HANDLERS)
    handlers[TriageStep.SELECTING] = {
        **_SELECTING,
        "c": (_SELECTING["c"][0], partial(_choose, default_limit=default_limit)),
    }
    while True:
        _render(session)
        _flush_notices(session)
        try:
            line = typer.prompt(session.step.value, default="", show_default=False)
        except typer.Abort:
            break
        command, _, argument = line.strip().partition(" ")
        if command in {"q", "quit"}:
            break
        if command in {"", "?"}:
            _help(session.step)
            continue
        entry = handlers[session.step].get(command)
        if entry is None:
            typer.echo(f"unknown command {command!r}; type ? for help")
            continue
        try:
            entry[1](session, executor, argument.strip())
        except (ValueError, IndexError) as exc:
            typer.echo(f"error: {exc}")


# Commands ---------------------------------------------------------------
@app.command("sources")
def sources(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of senders to rank"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log JSON records to stderr"),
) -> None:
    """Print the inbox senders ranked by message count."""

    runtime = _load_runtime(config)
    effective = limit or runtime.triage.default_source_limit
    if effective <= 0:
        typer.echo("error: --limit must be positive", err=True)
        raise typer.Exit(code=1)
    with _session_logger(runtime, verbose) as logger, _connect(runtime, logger) as gateway:
        session = TriageSession(
            gateway,
            page_size=runtime.triage.default_page_size,
            max_page_size=runtime.triage.max_page_size,
            logger=logger,
        )
        if not session.choose(effective):
            _flush_notices(session)
            raise typer.Exit(code=1)
        _render_summary(session)


@app.command("triage")
def triage(
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of senders to walk"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log JSON records to stderr"),
) -> None:
    """Walk the loudest senders one at a time and act on their mail.

    What:
      Ranks the top senders, then loops over typed commands until ``q`` or
      end of input. Type ``?`` at any prompt for the command list.

    How:
      Without ``--limit`` the user picks one of
      ``triage.source_limit_choices`` first.
    """

    runtime = _load_runtime(config)
    choices = runtime.triage.source_limit_choices
    with _session_logger(runtime, verbose) as logger, _connect(runtime, logger) as gateway:
        preferences = PreferenceStore.from_runtime(runtime, logger=logger)
        session = TriageSession(
            gateway,
            page_size=runtime.triage.default_page_size,
            max_page_size=runtime.triage.max_page_size,
            preferences=preferences,
            logger=logger,
        )
        executor = BulkActionExecutor(session)
        effective = limit
        while effective is None or effective <= 0:
            try:
                effective = typer.prompt(
                    f"How many senders? ({'/'.join(str(choice) for choice in choices)})",
                    default=runtime.triage.default_source_limit,
                    type=int,
                )
            except typer.Abort:
                raise typer.Exit(code=0) from None
        if not session.choose(effective):
            _flush_notices(session)
            raise typer.Exit(code=1)
        run_loop(session, executor, default_limit=runtime.triage.default_source_limit)
        LOGGER.info(
            "triage_finished session=%s processed=%s completed=%s",
            session.session_id,
            session.processed_count,
            len(session.completed_source_indices),
        )


def main() -> None:
    """Execute the Typer application entry point."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
