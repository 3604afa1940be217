"""Classification, scoring and retrieval result models."""

from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field

from ghostly.errors import ProviderError
from ghostly.models.context import SessionState
from ghostly.models.episode import Episode
from ghostly.types import RetrievalStatus, SearchMode, SignificanceReason, TriggerReason


class SignificanceResult(BaseModel):
    """Verdict of the significance classifier for one event."""
    is_significant: bool
    reason: Optional[SignificanceReason] = None


class TriggerDecision(BaseModel):
    """Whether retrieval should run for a context, and why."""
    should_trigger: bool
    reason: Optional[TriggerReason] = None


@dataclass
class Candidate:
    """An episode found by a search, with its raw similarity."""
    episode: Episode
    similarity: float


@dataclass
class SearchOutcome:
    """Result of a search attempt: candidates, or the provider error that stopped it."""
    mode: SearchMode
    candidates: list[Candidate] = field(default_factory=list)
    error: Optional[ProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: ProviderError) -> "SearchOutcome":
        return cls(mode=SearchMode.SEMANTIC, error=error)


class ScoredMemory(BaseModel):
    """An episode annotated with its confidence breakdown for one context."""
    episode: Episode
    semantic_score: float = 0.0
    project_match: bool = False
    cmd_score: float = 0.0
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def id(self) -> str:
        return self.episode.id


class RetrievalResult(BaseModel):
    """Terminal outcome of one retrieval attempt."""
    status: RetrievalStatus
    triggered: bool
    reason: Optional[TriggerReason] = None
    memories: list[ScoredMemory] = Field(default_factory=list)
    suggestion: Optional[str] = None
    top_memory: Optional[ScoredMemory] = None
    formatted: Optional[str] = None
    message: Optional[str] = None
    search_mode: Optional[SearchMode] = None


class CaptureResult(BaseModel):
    """What happened to one captured terminal event."""
    skipped: bool = False
    reason: Optional[str] = None
    stored: bool = False
    significant: bool = False
    significance: Optional[SignificanceReason] = None
    event_id: Optional[int] = None
    episode_id: Optional[str] = None
    embedded: bool = False
    retrieval: Optional[RetrievalResult] = None

    # Session state after this event, for the next capture call
    session: Optional[SessionState] = None
