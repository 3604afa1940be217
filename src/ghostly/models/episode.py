"""Episode model - a synthesized problem/fix record."""

from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field


class Episode(BaseModel):
    """A problem/fix pair distilled from one or more terminal events.

    Single-event episodes carry the command itself as the fix. Multi-step
    episodes join the commands of a workflow with the step separator.
    Only ``embedding_id`` is mutated after creation.
    """
    id: str = Field(default_factory=lambda: f"ep_{uuid.uuid4().hex[:12]}")
    project_hash: str
    summary: str = Field(min_length=1)
    problem: str = ""
    environment: str = ""
    fix: str = ""
    keywords: list[str] = Field(default_factory=list)
    embedding_id: Optional[str] = None

    # Events this episode was built from, in chronological order
    event_ids: list[int] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.now)

    model_config = {"json_encoders": {datetime: lambda v: v.isoformat()}}


class EmbeddingRecord(BaseModel):
    """A stored embedding vector, associated 1:1 with an episode."""
    id: str = Field(default_factory=lambda: f"emb_{uuid.uuid4().hex[:12]}")
    episode_id: str
    model: str
    vector: list[float]
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def dimension(self) -> int:
        return len(self.vector)
