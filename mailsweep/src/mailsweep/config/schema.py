"""Pydantic models describing MailSweep configuration documents."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as _PydanticValidationError
from pydantic import field_validator, model_validator


class ValidationError(ValueError):
    """Raised when configuration data does not satisfy the schema."""


class PathsConfig(BaseModel):
    """Filesystem layout used by the runtime."""

    model_config = ConfigDict(extra="forbid")

    state_dir: str


class ImapSettings(BaseModel):
    """Connection and mailbox settings for the IMAP gateway."""

    model_config = ConfigDict(extra="forbid")

    host: str
    port: int = Field(default=993, gt=0)
    ssl: bool = True
    username: str
    password_env: str = "MAILSWEEP_IMAP_PASSWORD"
    inbox: str = "INBOX"
    archive_mailbox: str = "Archive"
    trash_mailbox: str = "Trash"

    @model_validator(mode="after")
    def _validate_mailboxes(self) -> "ImapSettings":
        if self.archive_mailbox == self.inbox:
            raise ValidationError("archive_mailbox must differ from inbox")
        if self.archive_mailbox == self.trash_mailbox:
            raise ValidationError("archive_mailbox must differ from trash_mailbox")
        return self


class TriageSettings(BaseModel):
    """Defaults for the triage workflow."""

    model_config = ConfigDict(extra="forbid")

    default_page_size: int = Field(default=25, gt=0)
    max_page_size: int = Field(default=200, gt=0)
    default_source_limit: int = Field(default=10, gt=0)
    source_limit_choices: List[int] = Field(default_factory=lambda: [5, 10, 25])

    @field_validator("source_limit_choices")
    @classmethod
    def _validate_choices(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValidationError("source_limit_choices must not be empty")
        if any(choice <= 0 for choice in value):
            raise ValidationError("source_limit_choices must be positive")
        return sorted(set(value))

    @model_validator(mode="after")
    def _validate_page_size(self) -> "TriageSettings":
        if self.default_page_size > self.max_page_size:
            raise ValidationError("default_page_size must not exceed max_page_size")
        return self


class RuntimeConfig(BaseModel):
    """Root configuration loaded from ``config.yaml``."""

    model_config = ConfigDict(extra="forbid")

    version: int = 1
    paths: PathsConfig
    imap: Optional[ImapSettings] = None
    triage: TriageSettings = Field(default_factory=TriageSettings)

    @classmethod
    def model_validate(cls, data: Dict[str, Any]) -> "RuntimeConfig":  # type: ignore[override]
        try:
            return super().model_validate(data)
        except _PydanticValidationError as exc:
            raise ValidationError(str(exc)) from exc


class Preferences(BaseModel):
    """User preferences that survive between triage sessions."""

    model_config = ConfigDict(extra="ignore")

    page_size: Optional[int] = Field(default=None, gt=0)
