"""SimilarityEngine - semantic and lexical candidate search.

Semantic search compares the context's embedding against the stored
embeddings of the project's recent episodes. Lexical search is the text
fallback over summary/problem/keywords. Provider failures come back as a
failed SearchOutcome instead of an exception, so the orchestrator decides
what to do with them.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from ghostly.errors import DimensionMismatchError, ProviderError
from ghostly.models.context import Context
from ghostly.models.retrieval import Candidate, SearchOutcome
from ghostly.settings import RetrievalSettings
from ghostly.storage.base import EpisodeRepository
from ghostly.storage.embeddings import TimedEmbedder
from ghostly.types import SearchMode
from ghostly.utils.project import project_name

logger = logging.getLogger(__name__)


# =============================================================================
# Pure similarity functions
# =============================================================================

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors.

    Returns 0.0 if either vector has zero norm.

    Raises:
        DimensionMismatchError: if the vectors differ in length.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(len(va), len(vb))
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def _normalize_command(command: Optional[str]) -> list[str]:
    if not command:
        return []
    return command.lower().strip().split()


def command_similarity(cmd1: Optional[str], cmd2: Optional[str]) -> float:
    """Similarity of two command lines in [0, 1].

    Different base commands score 0. Same base with no arguments on
    either side scores 1. Otherwise the Jaccard index of the argument sets.
    """
    tokens1 = _normalize_command(cmd1)
    tokens2 = _normalize_command(cmd2)
    if not tokens1 or not tokens2:
        return 0.0
    if tokens1[0] != tokens2[0]:
        return 0.0

    args1 = set(tokens1[1:])
    args2 = set(tokens2[1:])
    if not args1 and not args2:
        return 1.0

    union = args1 | args2
    return len(args1 & args2) / len(union)


def lexical_query(context: Context) -> str:
    """Search terms for the text fallback: command, error, project dir."""
    terms = []
    if context.command:
        terms.append(context.command)
    if context.error_excerpt:
        terms.append(context.error_excerpt)
    tail = project_name(context.cwd)
    if tail:
        terms.append(tail)
    return " ".join(terms)


# =============================================================================
# Candidate search
# =============================================================================

class SimilarityEngine:
    """Finds candidate episodes for a context."""

    def __init__(
        self,
        store: EpisodeRepository,
        embedder: Optional[TimedEmbedder],
        settings: Optional[RetrievalSettings] = None,
    ):
        self._store = store
        self._embedder = embedder
        self._settings = settings or RetrievalSettings()

    def semantic_search(self, context: Context) -> SearchOutcome:
        """Rank the project's recent embedded episodes by cosine similarity.

        An empty embedding corpus yields an ok outcome with no candidates.
        """
        if self._embedder is None:
            return SearchOutcome.failure(ProviderError("No embedding provider configured"))

        episodes = self._store.get_recent_episodes(
            context.project_hash, limit=self._settings.candidate_limit,
        )
        corpus = []
        for episode in episodes:
            record = self._store.get_embedding(episode.id)
            if record is not None:
                corpus.append((episode, record.vector))

        if not corpus:
            return SearchOutcome(mode=SearchMode.SEMANTIC)

        try:
            query_vector = self._embedder.embed_context(context)
            candidates = [
                Candidate(episode=episode, similarity=cosine_similarity(query_vector, vector))
                for episode, vector in corpus
            ]
        except ProviderError as e:
            return SearchOutcome.failure(e)

        # Stable: equal similarities keep newest-first order
        candidates.sort(key=lambda c: c.similarity, reverse=True)
        return SearchOutcome(mode=SearchMode.SEMANTIC, candidates=candidates)

    def lexical_search(self, context: Context) -> SearchOutcome:
        """Text search over stored episodes, newest first, fixed similarity."""
        query = lexical_query(context)
        if not query:
            return SearchOutcome(mode=SearchMode.LEXICAL)

        episodes = self._store.search_episodes(query, limit=self._settings.candidate_limit)
        logger.debug(f"Lexical search for '{query}' found {len(episodes)} episodes")
        return SearchOutcome(
            mode=SearchMode.LEXICAL,
            candidates=[
                Candidate(episode=ep, similarity=self._settings.lexical_similarity)
                for ep in episodes
            ],
        )
