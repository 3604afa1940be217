"""Ghostly data models."""

from ghostly.models.context import Context, SessionState
from ghostly.models.episode import EmbeddingRecord, Episode
from ghostly.models.event import RawEvent
from ghostly.models.retrieval import (
    Candidate,
    CaptureResult,
    RetrievalResult,
    ScoredMemory,
    SearchOutcome,
    SignificanceResult,
    TriggerDecision,
)

__all__ = [
    "RawEvent",
    "Episode",
    "EmbeddingRecord",
    "Context",
    "SessionState",
    "SignificanceResult",
    "TriggerDecision",
    "Candidate",
    "SearchOutcome",
    "ScoredMemory",
    "RetrievalResult",
    "CaptureResult",
]
