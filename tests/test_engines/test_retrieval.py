"""Tests for the RetrievalOrchestrator, suggestions and formatting."""

from datetime import datetime

import pytest

from ghostly.engines.retrieval import RetrievalOrchestrator, format_memory, suggest_next_command
from ghostly.engines.scoring import ConfidenceScorer
from ghostly.engines.triggers import TriggerEvaluator
from ghostly.models.context import Context
from ghostly.models.episode import Episode
from ghostly.models.retrieval import Candidate, ScoredMemory, SearchOutcome
from ghostly.errors import ProviderError
from ghostly.settings import OutputSettings, RetrievalSettings, Settings
from ghostly.types import OutputFormat, RetrievalStatus, SearchMode, TriggerReason


class StubSimilarity:
    """SimilarityEngine stand-in with canned outcomes."""

    def __init__(self, semantic, lexical=None):
        self.semantic = semantic
        self.lexical = lexical or SearchOutcome(mode=SearchMode.LEXICAL)
        self.lexical_calls = 0

    def semantic_search(self, context):
        return self.semantic

    def lexical_search(self, context):
        self.lexical_calls += 1
        return self.lexical


def _ep(summary, fix="npm run build", project="proj1234"):
    return Episode(project_hash=project, summary=summary, fix=fix, problem=f"{summary} problem")


def _orchestrator(similarity, settings=None):
    settings = settings or Settings()
    return RetrievalOrchestrator(
        similarity,
        ConfidenceScorer(settings.retrieval),
        TriggerEvaluator(settings.retrieval.triggers),
        settings,
    )


ERROR_CTX = Context(command="npm run build", exit_code=1, project_hash="proj1234")


class TestRetrieve:
    def test_not_triggered(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC))
        result = _orchestrator(stub).retrieve(Context(exit_code=0))
        assert result.status == RetrievalStatus.NOT_TRIGGERED
        assert result.triggered is False
        assert result.memories == []
        assert result.suggestion is None

    def test_threshold_scenario(self):
        high = _ep("high")
        low = _ep("low", fix="npm install")
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[
            Candidate(episode=low, similarity=0.6),
            Candidate(episode=high, similarity=0.8),
        ]))
        result = _orchestrator(stub).retrieve(ERROR_CTX)

        # high: 0.5 * 0.8 + 0.3 + 0.2 = 0.9; low: 0.5 * 0.6 + 0.3 + 0 = 0.6
        assert result.status == RetrievalStatus.MATCHED
        assert [m.id for m in result.memories] == [high.id]
        assert result.top_memory.id == high.id
        assert result.top_memory.confidence == pytest.approx(0.9)
        assert result.reason == TriggerReason.ERROR
        assert result.search_mode == SearchMode.SEMANTIC

    def test_no_matches(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[
            Candidate(episode=_ep("weak", project="other", fix="make"), similarity=0.1),
        ]))
        result = _orchestrator(stub).retrieve(ERROR_CTX)
        assert result.status == RetrievalStatus.NO_MATCHES
        assert result.triggered is True
        assert result.memories == []
        assert result.message == "No relevant memories found"

    def test_provider_failure_falls_back(self):
        lexical = SearchOutcome(mode=SearchMode.LEXICAL, candidates=[Candidate(episode=_ep("text hit"), similarity=0.5)])
        stub = StubSimilarity(SearchOutcome.failure(ProviderError("timeout")), lexical)
        settings = Settings(retrieval=RetrievalSettings(min_confidence=0.5))
        result = _orchestrator(stub, settings).retrieve(ERROR_CTX)
        assert stub.lexical_calls == 1
        assert result.search_mode == SearchMode.LEXICAL
        # 0.5 * 0.5 + 0.3 + 0.2 = 0.75
        assert result.top_memory.confidence == pytest.approx(0.75)

    def test_empty_corpus_falls_back(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC))
        result = _orchestrator(stub).retrieve(ERROR_CTX)
        assert stub.lexical_calls == 1
        assert result.status == RetrievalStatus.NO_MATCHES

    def test_semantic_hits_skip_lexical(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[
            Candidate(episode=_ep("hit"), similarity=0.9),
        ]))
        _orchestrator(stub).retrieve(ERROR_CTX)
        assert stub.lexical_calls == 0

    def test_truncated_to_max_memories(self):
        candidates = [Candidate(episode=_ep(f"ep{i}"), similarity=1.0) for i in range(6)]
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=candidates))
        result = _orchestrator(stub).retrieve(ERROR_CTX)
        assert len(result.memories) == 3
        assert [m.episode.summary for m in result.memories] == ["ep0", "ep1", "ep2"]

    def test_limit_override(self):
        candidates = [Candidate(episode=_ep(f"ep{i}"), similarity=1.0) for i in range(6)]
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=candidates))
        assert len(_orchestrator(stub).retrieve(ERROR_CTX, limit=5).memories) == 5

    def test_limit_below_one_rejected(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[]))
        with pytest.raises(ValueError):
            _orchestrator(stub).retrieve(ERROR_CTX, limit=0)

    def test_limit_one(self):
        candidates = [Candidate(episode=_ep(f"ep{i}"), similarity=1.0) for i in range(3)]
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=candidates))
        assert len(_orchestrator(stub).retrieve(ERROR_CTX, limit=1).memories) == 1

    def test_excluded_ids(self):
        own = _ep("just captured")
        other = _ep("older")
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[
            Candidate(episode=own, similarity=1.0),
            Candidate(episode=other, similarity=0.9),
        ]))
        result = _orchestrator(stub).retrieve(ERROR_CTX, exclude_ids=[own.id])
        assert [m.id for m in result.memories] == [other.id]

    def test_suggestion_and_formatted(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[
            Candidate(episode=_ep("hit", fix="npm ci"), similarity=1.0),
        ]))
        result = _orchestrator(stub).retrieve(Context(command="npm ci", exit_code=1, project_hash="proj1234"))
        assert result.suggestion == "npm ci"
        assert result.formatted.startswith("Past episode (100% match):")

    def test_suggestions_disabled(self):
        stub = StubSimilarity(SearchOutcome(mode=SearchMode.SEMANTIC, candidates=[
            Candidate(episode=_ep("hit"), similarity=1.0),
        ]))
        settings = Settings(output=OutputSettings(show_suggestions=False))
        result = _orchestrator(stub, settings).retrieve(ERROR_CTX)
        assert result.status == RetrievalStatus.MATCHED
        assert result.suggestion is None


class TestSuggestNextCommand:
    WORKFLOW = "npm install → npm run build → npm test"

    def test_single_command(self):
        assert suggest_next_command(_ep("x", fix="make clean"), Context(command="make")) == "make clean"

    def test_next_step(self):
        ep = _ep("x", fix=self.WORKFLOW)
        assert suggest_next_command(ep, Context(command="npm run build")) == "npm test"

    def test_last_step_defaults_to_first(self):
        ep = _ep("x", fix=self.WORKFLOW)
        assert suggest_next_command(ep, Context(command="npm test")) == "npm install"

    def test_unknown_command_defaults_to_first(self):
        ep = _ep("x", fix=self.WORKFLOW)
        assert suggest_next_command(ep, Context(command="cargo build")) == "npm install"

    def test_no_command_defaults_to_first(self):
        ep = _ep("x", fix=self.WORKFLOW)
        assert suggest_next_command(ep, Context()) == "npm install"

    def test_empty_fix(self):
        assert suggest_next_command(_ep("x", fix=""), Context(command="make")) is None

    def test_accepts_scored_memory(self):
        memory = ScoredMemory(episode=_ep("x", fix=self.WORKFLOW), confidence=0.9)
        assert suggest_next_command(memory, Context(command="npm install")) == "npm run build"


class TestFormatMemory:
    def _memory(self, **kwargs):
        ep = Episode(
            id="ep_abc123def456",
            project_hash="proj1234",
            summary="npm - Error (/app)",
            problem=kwargs.get("problem", "Error: Module not found"),
            environment="dir: /app, branch: main",
            fix=kwargs.get("fix", "npm install react-dom"),
            keywords=["npm", "error"],
            created_at=datetime(2024, 5, 1, 10, 0, 0),
        )
        return ScoredMemory(episode=ep, confidence=0.876)

    def test_compact(self):
        text = format_memory(self._memory(), OutputFormat.COMPACT)
        assert text.splitlines() == [
            "Past episode (88% match):",
            "   Problem: Error: Module not found",
            "   Fix: npm install react-dom",
        ]

    def test_compact_truncates(self):
        text = format_memory(self._memory(problem="p" * 200, fix="f" * 200), "compact")
        lines = text.splitlines()
        assert lines[1] == "   Problem: " + "p" * 80
        assert lines[2] == "   Fix: " + "f" * 60

    def test_compact_missing_fields(self):
        text = format_memory(self._memory(problem="", fix=""))
        assert "Problem: N/A" in text
        assert "Fix: N/A" in text

    def test_verbose(self):
        text = format_memory(self._memory(), OutputFormat.VERBOSE)
        assert "Episode #ep_abc123def456" in text
        assert "Environment: dir: /app, branch: main" in text
        assert "Keywords: npm, error" in text
        assert "Confidence: 87.6%" in text
        assert "Project: proj1234" in text
        assert "Created: 2024-05-01T10:00:00" in text

    def test_plain_episode(self):
        text = format_memory(self._memory().episode, "verbose")
        assert "Confidence: 0.0%" in text

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            format_memory(self._memory(), "fancy")
