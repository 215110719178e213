"""
Module: tests/unit/test_config_loader.py

What:
    Validate the configuration loader by exercising discovery, parsing,
    schema validation and cache behaviour.

Why:
    The CLI, the IMAP gateway and the preference store all read the cached
    runtime configuration. A malformed or stale configuration must fail fast
    with the offending path rather than start a session with half-applied
    settings.

How:
    Write small YAML payloads to ``tmp_path`` and feed them through
    :func:`load_runtime_config`, asserting on the typed model or the raised
    :class:`RuntimeConfigError`.

Interfaces:
    test_canned_config_loads_from_environment, test_explicit_path_wins,
    test_missing_config_raises, test_invalid_yaml_raises,
    test_unknown_keys_are_rejected, test_mailbox_validator,
    test_page_size_validator, test_source_limit_choices_are_normalised,
    test_cache_and_reload

Invariants & Safety Rules:
    - The autouse ``runtime_config`` fixture resets the cache around each test.
"""

import textwrap

import pytest

from mailsweep.config.loader import (
    ConfigLoadError,
    RuntimeConfigError,
    get_runtime_config,
    load_runtime_config,
    reset_runtime_config,
)


def _write(tmp_path, body: str, name: str = "config.yaml"):
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def test_canned_config_loads_from_environment():
    """
    What:
        The config referenced by ``MAILSWEEP_CONFIG_PATH`` is picked up with
        no explicit argument.

    How:
        Rely on the autouse fixture and inspect mailbox names and defaults.
    """

    config = get_runtime_config()
    assert config.imap is not None
    assert config.imap.host == "imap.example.test"
    assert config.imap.password_env == "MAILSWEEP_TEST_PASSWORD"
    assert config.imap.archive_mailbox == "Archive"
    assert config.triage.default_page_size == 25
    assert config.triage.source_limit_choices == [5, 10, 25]


def test_explicit_path_wins(tmp_path):
    path = _write(
        tmp_path,
        """
        paths:
          state_dir: /tmp/explicit
        triage:
          default_page_size: 10
        """,
    )
    config = load_runtime_config(path)
    assert config.paths.state_dir == "/tmp/explicit"
    assert config.imap is None
    assert config.triage.default_page_size == 10


def test_missing_config_raises(tmp_path, monkeypatch):
    """
    What:
        A missing file raises :class:`RuntimeConfigError` listing the
        searched locations.
    """

    monkeypatch.setenv("MAILSWEEP_CONFIG_PATH", str(tmp_path / "absent.yaml"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_runtime_config()
    with pytest.raises(RuntimeConfigError) as excinfo:
        load_runtime_config(tmp_path / "nowhere.yaml")
    assert "nowhere.yaml" in str(excinfo.value)
    assert "absent.yaml" in str(excinfo.value)


def test_invalid_yaml_raises(tmp_path):
    path = _write(tmp_path, "paths: [unterminated\n")
    with pytest.raises(RuntimeConfigError) as excinfo:
        load_runtime_config(path)
    assert "Invalid YAML" in str(excinfo.value)


def test_top_level_must_be_mapping(tmp_path):
    path = _write(tmp_path, "- just\n- a list\n")
    with pytest.raises(ConfigLoadError):
        load_runtime_config(path)


def test_unknown_keys_are_rejected(tmp_path):
    path = _write(
        tmp_path,
        """
        paths:
          state_dir: /tmp/x
        feeds: []
        """,
    )
    with pytest.raises(RuntimeConfigError) as excinfo:
        load_runtime_config(path)
    assert str(path) in str(excinfo.value)


def test_mailbox_validator(tmp_path):
    """
    What:
        Archiving into the inbox is refused at load time.

    Why:
        ``archive_all`` would otherwise report success while every message
        stays where it was.
    """

    path = _write(
        tmp_path,
        """
        paths:
          state_dir: /tmp/x
        imap:
          host: imap.example.test
          username: someone
          archive_mailbox: INBOX
        """,
    )
    with pytest.raises(RuntimeConfigError) as excinfo:
        load_runtime_config(path)
    assert "archive_mailbox must differ from inbox" in str(excinfo.value)


def test_page_size_validator(tmp_path):
    path = _write(
        tmp_path,
        """
        paths:
          state_dir: /tmp/x
        triage:
          default_page_size: 500
          max_page_size: 100
        """,
    )
    with pytest.raises(RuntimeConfigError):
        load_runtime_config(path)


def test_source_limit_choices_are_normalised(tmp_path):
    path = _write(
        tmp_path,
        """
        paths:
          state_dir: /tmp/x
        triage:
          source_limit_choices: [25, 5, 10, 5]
        """,
    )
    assert load_runtime_config(path).triage.source_limit_choices == [5, 10, 25]


def test_cache_and_reload(tmp_path):
    """
    What:
        The cached model is served until ``reload=True`` is requested.

    How:
        Load, rewrite the file, load again without and with ``reload``.
    """

    path = _write(tmp_path, "paths:\n  state_dir: /tmp/first\n")
    first = load_runtime_config(path)
    path.write_text("paths:\n  state_dir: /tmp/second\n", encoding="utf-8")
    assert load_runtime_config(path) is first
    assert get_runtime_config() is first
    assert load_runtime_config(path, reload=True).paths.state_dir == "/tmp/second"
