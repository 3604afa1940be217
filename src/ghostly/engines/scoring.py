"""ConfidenceScorer - blends similarity signals into one ranking score.

    confidence = w_sem * semantic + w_proj * project_match + w_cmd * cmd_similarity

clamped to [0, 1]. Weights need not sum to 1.
"""

from typing import Iterable, Optional

from ghostly.engines.similarity import command_similarity
from ghostly.models.context import Context
from ghostly.models.episode import Episode
from ghostly.models.retrieval import Candidate, ScoredMemory
from ghostly.settings import RetrievalSettings


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


class ConfidenceScorer:
    """Scores, filters and ranks candidate episodes for a context."""

    def __init__(self, settings: Optional[RetrievalSettings] = None):
        self._settings = settings or RetrievalSettings()

    @property
    def min_confidence(self) -> float:
        return self._settings.min_confidence

    def score(self, episode: Episode, context: Context, semantic_score: float) -> ScoredMemory:
        """Annotate one episode with its confidence breakdown."""
        weights = self._settings.weights
        project_match = episode.project_hash == context.project_hash
        cmd_score = 0.0
        if context.command and episode.fix:
            cmd_score = command_similarity(context.command, episode.fix)

        confidence = (
            weights.semantic_similarity * semantic_score
            + weights.project_match * (1.0 if project_match else 0.0)
            + weights.command_similarity * cmd_score
        )
        return ScoredMemory(
            episode=episode,
            semantic_score=semantic_score,
            project_match=project_match,
            cmd_score=cmd_score,
            confidence=clamp(confidence),
        )

    def rank(self, memories: Iterable[ScoredMemory]) -> list[ScoredMemory]:
        """Drop memories under the threshold and sort the rest, best first.

        The sort is stable, so equal confidences keep retrieval order.
        """
        survivors = [m for m in memories if m.confidence >= self.min_confidence]
        survivors.sort(key=lambda m: m.confidence, reverse=True)
        return survivors

    def score_candidates(self, candidates: Iterable[Candidate], context: Context) -> list[ScoredMemory]:
        """Score every candidate, then filter and rank."""
        return self.rank(self.score(c.episode, context, c.similarity) for c in candidates)
