"""Retrieval context and terminal session state."""

from typing import Optional
import uuid

from pydantic import BaseModel, Field

from ghostly.config import UNKNOWN_PROJECT
from ghostly.models.event import RawEvent


class Context(BaseModel):
    """Ephemeral snapshot of terminal state that drives one retrieval attempt."""
    command: str = ""
    cwd: str = ""
    git_branch: Optional[str] = None
    exit_code: Optional[int] = 0
    error_excerpt: str = ""
    project_hash: str = UNKNOWN_PROJECT

    # Context changes detected against the session state
    is_repeated: bool = False
    is_project_entry: bool = False
    branch_changed: bool = False

    @property
    def has_error(self) -> bool:
        return self.exit_code is not None and self.exit_code != 0


class SessionState(BaseModel):
    """Where the shell session was when the previous event was processed.

    Owned by the caller and advanced after each retrieval, so no state
    hides between pipeline calls.
    """
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    last_directory: Optional[str] = None
    last_branch: Optional[str] = None
    events_seen: int = 0

    def advance(self, event: RawEvent) -> "SessionState":
        """Return the state after ``event`` has been processed."""
        return SessionState(
            session_id=self.session_id,
            last_directory=event.cwd or self.last_directory,
            last_branch=event.git_branch or self.last_branch,
            events_seen=self.events_seen + 1,
        )
