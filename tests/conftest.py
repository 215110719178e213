"""Pytest configuration shared by every suite.

What:
  Make the in-repo ``mailsweep`` sources importable and pin a canned runtime
  configuration for every test.

Why:
  The gateway and preference store read the global runtime configuration.
  Without an explicit fixture, tests would depend on whatever
  ``config.yaml`` happens to exist on the developer's machine.

How:
  Prepend ``mailsweep/src`` to ``sys.path`` when the source tree is present,
  then use an autouse fixture that points ``MAILSWEEP_CONFIG_PATH`` at
  ``tests/data/config.yaml`` and resets the runtime cache around each test.

Interfaces:
  :func:`runtime_config` (pytest fixture).
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailsweep" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))

import pytest

from mailsweep.config.loader import reset_runtime_config

CONFIG_PATH = Path(__file__).resolve().parent / "data" / "config.yaml"


@pytest.fixture(autouse=True)
def runtime_config(monkeypatch: pytest.MonkeyPatch):
    """Apply the canned configuration file for every test."""

    monkeypatch.setenv("MAILSWEEP_CONFIG_PATH", str(CONFIG_PATH))
    reset_runtime_config()
    try:
        yield CONFIG_PATH
    finally:
        reset_runtime_config()
