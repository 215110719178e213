"""MailSweep configuration package.

What:
  Provide the import surface for configuration loading, validation and the
  persisted preference store.

Interfaces:
  - load_runtime_config / get_runtime_config / reset_runtime_config: Resolve
    ``config.yaml`` and expose a cached runtime configuration object.
  - PreferenceStore: Persist the preferred page size between sessions.
  - RuntimeConfig / ImapSettings / TriageSettings / ValidationError: Pydantic
    models and the validation error type.

Invariants:
  - Callers go through the schema types; raw YAML never reaches the session.
"""

from .loader import (
    ConfigLoadError,
    RuntimeConfigError,
    get_runtime_config,
    load_runtime_config,
    reset_runtime_config,
)
from .preferences import PreferenceStore
from .schema import ImapSettings, Preferences, RuntimeConfig, TriageSettings, ValidationError

__all__ = [
    "ConfigLoadError",
    "RuntimeConfigError",
    "get_runtime_config",
    "load_runtime_config",
    "reset_runtime_config",
    "PreferenceStore",
    "ImapSettings",
    "Preferences",
    "RuntimeConfig",
    "TriageSettings",
    "ValidationError",
]
