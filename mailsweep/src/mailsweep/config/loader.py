"""Strict loader for the MailSweep runtime configuration.

What:
  Locate, parse and validate ``config.yaml`` and keep the validated model in a
  process-wide cache.

Why:
  The CLI, the IMAP gateway and the preference store all need the same
  settings. Centralising discovery and validation guarantees they agree on
  mailbox names and triage defaults, and that malformed files fail with the
  offending path in the message.

How:
  Resolve candidate paths from an explicit argument, the
  ``MAILSWEEP_CONFIG_PATH`` environment variable and well-known defaults.
  Parse the first existing file with PyYAML's ``safe_load``, validate it with
  :class:`~mailsweep.config.schema.RuntimeConfig` and cache the result.

Interfaces:
  :func:`load_runtime_config`, :func:`get_runtime_config`,
  :func:`reset_runtime_config`, :class:`ConfigLoadError`,
  :class:`RuntimeConfigError`.

Invariants:
  - Only schema-validated models are returned.
  - The cache honours explicit ``reload`` requests and path changes.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

import yaml

from .schema import RuntimeConfig, ValidationError


class ConfigLoadError(Exception):
    """Base error for configuration parsing or validation failures."""


class RuntimeConfigError(ConfigLoadError):
    """Error raised when ``config.yaml`` cannot be located, read or validated.

    What:
      Signals runtime configuration problems specifically, so the CLI can
      print a remediation hint and exit with status ``1``.
    """


_CONFIG_ENV = "MAILSWEEP_CONFIG_PATH"
_DEFAULT_LOCATIONS: Tuple[Path, ...] = (
    Path("config.yaml"),
    Path("~/.config/mailsweep/config.yaml"),
    Path("/etc/mailsweep/config.yaml"),
)
_RUNTIME_CACHE: Optional[Tuple[Path, RuntimeConfig]] = None


def _candidate_paths(path: Optional[Path]) -> Iterable[Path]:
    """Yield configuration file locations in priority order.

    What:
      Produce the deduplicated list of paths to inspect for ``config.yaml``.

    How:
      Explicit argument first, then ``MAILSWEEP_CONFIG_PATH``, then the
      defaults; ``~`` is expanded on every candidate.
    """

    seen: set[Path] = set()
    raw: list[Path] = []
    if path is not None:
        raw.append(path)
    env_path = os.environ.get(_CONFIG_ENV)
    if env_path:
        raw.append(Path(env_path))
    raw.extend(_DEFAULT_LOCATIONS)
    for candidate in raw:
        candidate = candidate.expanduser()
        if candidate not in seen:
            seen.add(candidate)
            yield candidate


def _parse_config_payload(text: str, source: Path) -> dict[str, Any]:
    """Parse ``config.yaml`` text into a mapping.

    Raises:
      RuntimeConfigError: If the YAML is malformed or not a mapping.
    """

    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise RuntimeConfigError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeConfigError(f"{source} must contain a mapping at the top-level")
    return payload


def _load_runtime_from_path(path: Path) -> RuntimeConfig:
    """Read and validate the configuration stored at ``path``."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise RuntimeConfigError(f"Configuration file missing: {path}") from exc
    except OSError as exc:  # pragma: no cover - filesystem surface
        raise RuntimeConfigError(f"Unable to read configuration file {path}: {exc}") from exc
    payload = _parse_config_payload(text, path)
    try:
        return RuntimeConfig.model_validate(payload)
    except ValidationError as exc:
        raise RuntimeConfigError(f"Invalid configuration in {path}: {exc}") from exc


def load_runtime_config(
    path: Optional[Path | str] = None,
    *,
    reload: bool = False,
) -> RuntimeConfig:
    """Resolve, parse and cache the runtime configuration.

    What:
      Locate ``config.yaml`` using the precedence chain, validate it and return
      a :class:`RuntimeConfig`.

    Why:
      Caching avoids re-reading the file for every session while ``reload``
      lets tests and the CLI force a fresh read.

    How:
      Serve the cached model when the requested path matches (or none was
      requested), otherwise walk the candidates until one exists.

    Args:
      path: Optional explicit location of ``config.yaml``.
      reload: When ``True`` bypass the cache.

    Returns:
      The validated runtime configuration.

    Raises:
      RuntimeConfigError: If no candidate exists or the first existing one is
        invalid.
    """

    global _RUNTIME_CACHE

    requested_path = Path(path).expanduser() if isinstance(path, (str, Path)) else None
    if not reload and _RUNTIME_CACHE is not None:
        cached_path, cached_config = _RUNTIME_CACHE
        if requested_path is None or cached_path == requested_path:
            return cached_config

    searched: list[str] = []
    for candidate in _candidate_paths(requested_path):
        if not candidate.exists():
            searched.append(str(candidate))
            continue
        config = _load_runtime_from_path(candidate)
        _RUNTIME_CACHE = (candidate, config)
        return config

    listing = ", ".join(searched) if searched else "<none>"
    raise RuntimeConfigError(f"Unable to locate config.yaml (searched: {listing})")


def get_runtime_config() -> RuntimeConfig:
    """Return the cached runtime configuration, loading it on demand."""

    return load_runtime_config()


def reset_runtime_config() -> None:
    """Drop the cached configuration so the next access reloads from disk."""

    global _RUNTIME_CACHE
    _RUNTIME_CACHE = None
