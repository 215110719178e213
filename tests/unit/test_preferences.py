"""
Module: tests/unit/test_preferences.py

What:
    Cover :class:`~mailsweep.config.preferences.PreferenceStore` fallbacks,
    clamping and persistence.

Why:
    The page size is read when a session enters the summary step. A missing
    or corrupted preferences file must never stop a session from starting.
"""

import json

from mailsweep.config.loader import get_runtime_config
from mailsweep.config.preferences import PREFERENCES_FILENAME, PreferenceStore


def test_missing_file_uses_default(tmp_path):
    store = PreferenceStore(tmp_path / "prefs.yaml", default_page_size=30)
    assert store.page_size() == 30
    assert store.load().page_size is None


def test_save_clamps_and_persists(tmp_path):
    store = PreferenceStore(tmp_path / "nested" / "prefs.yaml", max_page_size=50)
    assert store.save_page_size(80) == 50
    assert store.page_size() == 50
    assert store.save_page_size(0) == 1
    assert "page_size: 1" in store.path.read_text(encoding="utf-8")
    assert [p.name for p in store.path.parent.iterdir()] == ["prefs.yaml"]


def test_invalid_document_is_ignored_and_logged(tmp_path, logger, log_stream):
    """
    What:
        A negative page size on disk is treated as "no preference" and a
        warning is logged.
    """

    path = tmp_path / "prefs.yaml"
    path.write_text("page_size: -3\n", encoding="utf-8")
    store = PreferenceStore(path, default_page_size=25, logger=logger)
    assert store.page_size() == 25
    events = [json.loads(line)["msg"] for line in log_stream.getvalue().splitlines()]
    assert "preferences_invalid" in events


def test_unparseable_document_is_ignored(tmp_path, logger):
    path = tmp_path / "prefs.yaml"
    path.write_text("page_size: [1,\n", encoding="utf-8")
    assert PreferenceStore(path, logger=logger).page_size() == 25


def test_unknown_keys_are_dropped_on_save(tmp_path):
    path = tmp_path / "prefs.yaml"
    path.write_text("page_size: 10\ntheme: dark\n", encoding="utf-8")
    store = PreferenceStore(path)
    assert store.page_size() == 10
    store.save_page_size(15)
    assert store.page_size() == 15
    assert "theme" not in path.read_text(encoding="utf-8")


def test_from_runtime_uses_state_dir():
    runtime = get_runtime_config()
    store = PreferenceStore.from_runtime(runtime)
    assert store.path.name == PREFERENCES_FILENAME
    assert str(store.path.parent) == runtime.paths.state_dir
