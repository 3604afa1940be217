"""RetrievalOrchestrator - context in, ranked memories and a suggestion out.

Pipeline:
1. TriggerEvaluator decides whether to search at all.
2. SimilarityEngine runs semantic search; a failed outcome or an empty
   embedding corpus falls back to lexical search.
3. ConfidenceScorer scores, filters and ranks the candidates.
4. The top memory yields a suggested next command and formatted text.
"""

import logging
from typing import Iterable, Optional, Union

from ghostly.config import NO_MATCHES_MESSAGE, STEP_SEPARATOR
from ghostly.engines.scoring import ConfidenceScorer
from ghostly.engines.similarity import SimilarityEngine
from ghostly.engines.triggers import TriggerEvaluator
from ghostly.models.context import Context
from ghostly.models.episode import Episode
from ghostly.models.retrieval import RetrievalResult, ScoredMemory, SearchOutcome
from ghostly.settings import Settings
from ghostly.types import OutputFormat, RetrievalStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Suggestion and formatting
# =============================================================================

def suggest_next_command(memory: Union[ScoredMemory, Episode], context: Context) -> Optional[str]:
    """Next command to run, taken from a memory's fix.

    A single-command fix is suggested as is. For a workflow, the step after
    the one containing the current command; otherwise the first step.
    """
    episode = memory.episode if isinstance(memory, ScoredMemory) else memory
    fix = episode.fix
    if not fix:
        return None

    separator = STEP_SEPARATOR.strip()
    if separator not in fix:
        return fix

    steps = [step.strip() for step in fix.split(separator)]
    current = context.command
    if current:
        for i, step in enumerate(steps):
            if current in step and i < len(steps) - 1:
                return steps[i + 1]
    return steps[0]


def _truncate(text: str, limit: int) -> str:
    return text[:limit]


def format_memory(
    memory: Union[ScoredMemory, Episode],
    mode: Union[OutputFormat, str] = OutputFormat.COMPACT,
) -> str:
    """Render a memory for the terminal, compact or verbose."""
    if isinstance(memory, ScoredMemory):
        episode, confidence = memory.episode, memory.confidence
    else:
        episode, confidence = memory, 0.0

    if OutputFormat(mode) == OutputFormat.VERBOSE:
        rule = "=" * 40
        keywords = ", ".join(episode.keywords)
        return "\n".join([
            rule,
            f"Episode #{episode.id}",
            rule,
            f"Problem: {episode.problem or 'N/A'}",
            f"Environment: {episode.environment or 'N/A'}",
            f"Fix: {episode.fix or 'N/A'}",
            f"Keywords: {keywords or 'N/A'}",
            f"Confidence: {confidence * 100:.1f}%",
            f"Project: {episode.project_hash or 'N/A'}",
            f"Created: {episode.created_at.isoformat(timespec='seconds')}",
            rule,
        ])

    return "\n".join([
        f"Past episode ({confidence * 100:.0f}% match):",
        f"   Problem: {_truncate(episode.problem or 'N/A', 80)}",
        f"   Fix: {_truncate(episode.fix or 'N/A', 60)}",
    ])


# =============================================================================
# Orchestrator
# =============================================================================

class RetrievalOrchestrator:
    """Composes trigger, search, scoring and suggestion into one call."""

    def __init__(
        self,
        similarity: SimilarityEngine,
        scorer: ConfidenceScorer,
        triggers: TriggerEvaluator,
        settings: Optional[Settings] = None,
    ):
        self._similarity = similarity
        self._scorer = scorer
        self._triggers = triggers
        self._settings = settings or Settings()

    def search(self, context: Context) -> SearchOutcome:
        """Semantic search with lexical fallback."""
        outcome = self._similarity.semantic_search(context)
        if not outcome.ok:
            logger.warning(f"Semantic search failed, using text search: {outcome.error}")
            return self._similarity.lexical_search(context)
        if not outcome.candidates:
            logger.debug("No embedded episodes for project, using text search")
            return self._similarity.lexical_search(context)
        return outcome

    def retrieve(
        self,
        context: Context,
        exclude_ids: Iterable[str] = (),
        limit: Optional[int] = None,
    ) -> RetrievalResult:
        """Run the full pipeline for one context.

        Args:
            context: Current terminal state.
            exclude_ids: Episode ids never to return (e.g. the one just captured).
            limit: Override for the maximum number of memories returned.

        Raises:
            ValueError: if ``limit`` is given and below 1.
        """
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        max_memories = limit if limit is not None else self._settings.retrieval.max_memories

        decision = self._triggers.evaluate(context)
        if not decision.should_trigger:
            return RetrievalResult(
                status=RetrievalStatus.NOT_TRIGGERED,
                triggered=False,
                reason=decision.reason,
            )

        outcome = self.search(context)
        excluded = set(exclude_ids)
        candidates = [c for c in outcome.candidates if c.episode.id not in excluded]
        ranked = self._scorer.score_candidates(candidates, context)

        if not ranked:
            return RetrievalResult(
                status=RetrievalStatus.NO_MATCHES,
                triggered=True,
                reason=decision.reason,
                message=NO_MATCHES_MESSAGE,
                search_mode=outcome.mode,
            )

        memories = ranked[:max_memories]
        top = memories[0]
        output = self._settings.output
        suggestion = suggest_next_command(top, context) if output.show_suggestions else None

        logger.debug(
            f"Retrieved {len(memories)} memories ({outcome.mode.value}), "
            f"top {top.id} at {top.confidence:.2f}"
        )
        return RetrievalResult(
            status=RetrievalStatus.MATCHED,
            triggered=True,
            reason=decision.reason,
            memories=memories,
            suggestion=suggestion,
            top_memory=top,
            formatted=format_memory(top, output.format),
            search_mode=outcome.mode,
        )
