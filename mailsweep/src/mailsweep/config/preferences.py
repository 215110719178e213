"""Persisted triage preferences.

What:
  Store the preferred page size between triage sessions in a small YAML file
  under the runtime state directory.

Why:
  The page size is the only piece of triage state that outlives a session;
  everything else restarts from the sender selection step. Keeping the file
  tiny and schema-checked means a corrupted or hand-edited file can never
  break session start-up.

How:
  :class:`PreferenceStore` reads the document through
  :class:`~mailsweep.config.schema.Preferences`, falls back to the configured
  default when the file is missing, unreadable or invalid, and writes updates
  atomically through a temporary sibling file.

Interfaces:
  :class:`PreferenceStore` exposing ``load``, ``page_size`` and
  ``save_page_size``.

Invariants & Safety:
  - ``page_size`` always returns a value in ``[1, max_page_size]``.
  - A failed read is logged and treated as "no preference"; it never raises.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError as _PydanticValidationError

from .schema import Preferences, RuntimeConfig
from ..utils.logging import JsonLogger, get_logger


PREFERENCES_FILENAME = "preferences.yaml"


class PreferenceStore:
    """Filesystem-backed accessor for :class:`Preferences`.

    What:
      Loads and saves the preference document at ``path``.

    Why:
      The session reads the page size when entering the summary step and
      writes it whenever the user changes it; both paths go through one object
      so clamping rules live in a single place.

    How:
      Keeps the target path and the page-size bounds; every call re-reads the
      file so two terminals sharing a state directory see each other's last
      write.
    """

    def __init__(
        self,
        path: Path,
        *,
        default_page_size: int = 25,
        max_page_size: int = 200,
        logger: Optional[JsonLogger] = None,
    ) -> None:
        self._path = path
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._logger = logger or get_logger("mailsweep.preferences")

    @classmethod
    def from_runtime(cls, runtime: RuntimeConfig, *, logger: Optional[JsonLogger] = None) -> "PreferenceStore":
        """Build a store located in ``runtime.paths.state_dir``."""

        return cls(
            Path(runtime.paths.state_dir).expanduser() / PREFERENCES_FILENAME,
            default_page_size=runtime.triage.default_page_size,
            max_page_size=runtime.triage.max_page_size,
            logger=logger,
        )

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Preferences:
        """Return the stored preferences, or an empty document on any failure."""

        if not self._path.exists():
            return Preferences()
        try:
            payload = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            self._logger.warning("preferences_unreadable", path=str(self._path), error=str(exc))
            return Preferences()
        if not isinstance(payload, dict):
            self._logger.warning("preferences_invalid", path=str(self._path), error="not a mapping")
            return Preferences()
        try:
            return Preferences.model_validate(payload)
        except _PydanticValidationError as exc:
            self._logger.warning("preferences_invalid", path=str(self._path), error=str(exc))
            return Preferences()

    def page_size(self) -> int:
        """Return the preferred page size clamped into the configured bounds."""

        stored = self.load().page_size
        if stored is None:
            return self._default_page_size
        return max(1, min(stored, self._max_page_size))

    def save_page_size(self, page_size: int) -> int:
        """Persist ``page_size`` and return the value actually stored.

        What:
          Clamps ``page_size`` into ``[1, max_page_size]`` and writes it.

        How:
          Serialises the merged :class:`Preferences` document to a temporary
          file in the same directory and renames it over the target, so a
          crash mid-write leaves the previous file intact.
        """

        value = max(1, min(int(page_size), self._max_page_size))
        prefs = self.load()
        prefs.page_size = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(prefs.model_dump(mode="json"), sort_keys=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".preferences-", dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, self._path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self._logger.info("page_size_saved", page_size=value)
        return value
