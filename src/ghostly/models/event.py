"""Raw terminal event model - one executed shell command."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ghostly.config import UNKNOWN_PROJECT


class RawEvent(BaseModel):
    """A single command execution as reported by the shell hook.

    Immutable once recorded. Text fields tolerate missing values (None → "")
    so that classification and synthesis never fail on partial input.
    """
    id: Optional[int] = None
    session_id: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    cwd: str = ""
    git_branch: Optional[str] = None
    command: str = ""
    exit_code: Optional[int] = None
    stdout_excerpt: str = ""
    stderr_excerpt: str = ""
    project_hash: str = UNKNOWN_PROJECT

    model_config = {"frozen": True}

    @field_validator("session_id", "cwd", "command", "stdout_excerpt", "stderr_excerpt", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("project_hash", mode="before")
    @classmethod
    def _default_project(cls, value: Any) -> Any:
        return value or UNKNOWN_PROJECT

    @field_validator("git_branch", mode="before")
    @classmethod
    def _blank_branch(cls, value: Any) -> Any:
        return value or None
