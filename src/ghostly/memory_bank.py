"""MemoryBank - the coordinator that wires storage and engines together.

This is the primary API of Ghostly. It orchestrates:
- SignificanceClassifier -> decides which events become episodes
- EpisodeSynthesizer     -> builds episodes from one event or a workflow
- SimilarityEngine       -> semantic search with lexical fallback
- ConfidenceScorer       -> blends signals into a ranking score
- TriggerEvaluator       -> decides when retrieval runs
- RetrievalOrchestrator  -> ranked memories, suggestion, formatted text

The capture pipeline:
1. Ignore-listed commands are dropped
2. Context changes are detected against the session state
3. The raw event is stored
4. Significant events become episodes, embedded when the provider allows
5. Retrieval runs for the context and the session state advances
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from ghostly.engines.retrieval import RetrievalOrchestrator
from ghostly.engines.scoring import ConfidenceScorer
from ghostly.engines.significance import SignificanceClassifier
from ghostly.engines.similarity import SimilarityEngine
from ghostly.engines.synthesizer import EpisodeSynthesizer
from ghostly.engines.triggers import TriggerEvaluator, build_context
from ghostly.errors import ProviderError
from ghostly.models.context import Context, SessionState
from ghostly.models.episode import Episode
from ghostly.models.event import RawEvent
from ghostly.models.retrieval import CaptureResult, RetrievalResult
from ghostly.settings import Settings
from ghostly.storage.embeddings import EmbeddingFunction, TimedEmbedder, get_embedding_function
from ghostly.storage.episode_store import EpisodeStore
from ghostly.utils.project import find_project_root, generate_project_hash, project_name

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Naive UTC now, comparable with SQLite's datetime('now')."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MemoryBank:
    """Terminal memory. Captures events, stores episodes, recalls them."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db_path: Optional[Path] = None,
        embedding_fn: Optional[EmbeddingFunction] = None,
    ):
        self.settings = settings or Settings()
        self._db_path = Path(db_path) if db_path else self.settings.storage.db_path
        self._embedding_fn = embedding_fn
        self._initialized = False

        self._store: Optional[EpisodeStore] = None
        self._embedder: Optional[TimedEmbedder] = None

        # Engines (initialized in .initialize())
        self.classifier: Optional[SignificanceClassifier] = None
        self.synthesizer: Optional[EpisodeSynthesizer] = None
        self.similarity: Optional[SimilarityEngine] = None
        self.scorer: Optional[ConfidenceScorer] = None
        self.triggers: Optional[TriggerEvaluator] = None
        self.retrieval: Optional[RetrievalOrchestrator] = None

    @property
    def store(self) -> EpisodeStore:
        if self._store is None:
            raise RuntimeError("MemoryBank not initialized. Call initialize() first.")
        return self._store

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("MemoryBank not initialized. Call initialize() first.")

    def initialize(self) -> None:
        """Open the store, pick an embedding provider and build the engines."""
        self._store = EpisodeStore(self._db_path)
        self._store.initialize()

        emb = self.settings.embedding
        embedding_fn = self._embedding_fn or get_embedding_function(
            prefer=emb.provider,
            sbert_model=emb.sbert_model,
            ollama_model=emb.ollama_model,
            ollama_base_url=emb.ollama_base_url,
        )
        self._embedder = TimedEmbedder(embedding_fn, emb.timeout_seconds)

        retrieval = self.settings.retrieval
        self.classifier = SignificanceClassifier(self.settings.capture)
        self.synthesizer = EpisodeSynthesizer(self.settings.capture, self.classifier)
        self.similarity = SimilarityEngine(self._store, self._embedder, retrieval)
        self.scorer = ConfidenceScorer(retrieval)
        self.triggers = TriggerEvaluator(retrieval.triggers)
        self.retrieval = RetrievalOrchestrator(
            self.similarity, self.scorer, self.triggers, self.settings,
        )

        self._initialized = True
        logger.info(f"MemoryBank ready ({self._embedder.model_name})")

    def close(self) -> None:
        """Shut down the embedder and the store."""
        if self._embedder:
            self._embedder.shutdown()
            self._embedder = None
        if self._store:
            self._store.close()
            self._store = None
        self._initialized = False

    # =========================================================================
    # Sessions
    # =========================================================================

    def load_session(self, session_id: Optional[str] = None) -> SessionState:
        """Session state as persisted in the store.

        Without an id, the most recent session is resumed if it is still
        active within the session timeout; otherwise a new one starts.
        """
        self._require_initialized()
        if session_id is None:
            latest = self.store.get_latest_session_id()
            if latest and self._session_active(latest):
                session_id = latest
            else:
                session_id = uuid.uuid4().hex

        row = self.store.get_or_create_session(session_id)
        return SessionState(
            session_id=session_id,
            last_directory=row.get("cwd") or None,
            last_branch=row.get("git_branch") or None,
        )

    def _session_active(self, session_id: str) -> bool:
        row = self.store.get_session(session_id)
        if not row or row.get("ended_at"):
            return False
        try:
            last_activity = datetime.fromisoformat(row["last_activity"])
        except (TypeError, ValueError):
            return False
        timeout = timedelta(minutes=self.settings.capture.session_timeout_minutes)
        return _utcnow() - last_activity <= timeout

    def end_session(self, session_id: str) -> bool:
        self._require_initialized()
        return self.store.end_session(session_id)

    def session_info(self, session_id: Optional[str] = None) -> dict[str, Any]:
        """Stored row of a session (default: the current one) with its event count."""
        state = self.load_session(session_id)
        info = self.store.get_session(state.session_id) or {"session_id": state.session_id}
        info["events"] = len(self.store.get_session_events(state.session_id))
        return info

    # =========================================================================
    # Capture
    # =========================================================================

    def capture(
        self,
        command: str,
        cwd: str = "",
        exit_code: Optional[int] = None,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        git_branch: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        session: Optional[SessionState] = None,
    ) -> CaptureResult:
        """Record one executed command and retrieve memories for it.

        Args:
            command: The command line as typed.
            cwd: Working directory the command ran in.
            exit_code: Process exit status, None if unknown.
            stdout: Captured standard output (truncated to the configured maximum).
            stderr: Captured standard error (truncated to the configured maximum).
            git_branch: Current branch, if inside a repository.
            timestamp: When the command ran (defaults to now).
            session: Caller-owned session state; loaded from the store if omitted.

        Returns:
            CaptureResult with the stored ids, the retrieval outcome and the
            advanced session state.

        Raises:
            StoreError: if persistence fails. The event is abandoned.
        """
        self._require_initialized()
        if self.classifier.should_ignore(command):
            logger.debug(f"Ignoring command: {command}")
            return CaptureResult(skipped=True, reason="ignored_command", session=session)

        if session is None:
            session = self.load_session()

        output = self.settings.output
        project_hash = generate_project_hash(cwd)
        event = RawEvent(
            session_id=session.session_id,
            timestamp=timestamp or datetime.now(),
            cwd=cwd,
            git_branch=git_branch,
            command=command,
            exit_code=exit_code,
            stdout_excerpt=(stdout or "")[:output.max_stdout_length],
            stderr_excerpt=(stderr or "")[:output.max_stderr_length],
            project_hash=project_hash,
        )

        # Context first: project entry needs to know whether the project
        # existed before this event registered it.
        context = build_context(event, session, self.store)

        self.store.get_or_create_session(session.session_id, cwd, git_branch)
        self.store.update_session(session.session_id, cwd, git_branch)
        root = find_project_root(cwd) if cwd else None
        self.store.upsert_project(
            project_hash,
            name=project_name(str(root) if root else cwd) or "unknown",
            root_path=str(root) if root else cwd,
        )
        event_id = self.store.insert_event(event)
        event = event.model_copy(update={"id": event_id})
        next_session = session.advance(event)

        significance = self.classifier.classify(event)
        result = CaptureResult(
            stored=True,
            significant=significance.is_significant,
            significance=significance.reason,
            event_id=event_id,
            session=next_session,
        )

        exclude: list[str] = []
        if significance.is_significant:
            episode = self.synthesizer.from_event(event)
            self.store.insert_episode(episode)
            result.episode_id = episode.id
            result.embedded = self._embed_episode(episode) is not None
            exclude.append(episode.id)

        result.retrieval = self.retrieval.retrieve(context, exclude_ids=exclude)
        return result

    def _embed_episode(self, episode: Episode) -> Optional[str]:
        """Embed and attach; a provider failure leaves the episode unembedded."""
        try:
            vector = self._embedder.embed_episode(episode)
        except ProviderError as e:
            logger.warning(f"Failed to embed episode {episode.id}: {e}")
            return None
        embedding_id = self.store.insert_embedding(episode.id, self._embedder.model_name, vector)
        self.store.update_episode(episode.model_copy(update={"embedding_id": embedding_id}))
        return embedding_id

    # =========================================================================
    # Consolidation
    # =========================================================================

    def consolidate(self, session_id: Optional[str] = None) -> list[Episode]:
        """Turn a session's command workflows into multi-step episodes.

        Groups already consolidated are skipped, so running this twice
        creates nothing new.
        """
        self._require_initialized()
        session_id = session_id or self.store.get_latest_session_id()
        if not session_id:
            return []

        events = self.store.get_session_events(session_id)
        created = []
        for group in self.synthesizer.group_into_episodes(events):
            event_ids = [e.id for e in group if e.id is not None]
            if self.store.find_episode_by_events(event_ids):
                continue
            episode = self.synthesizer.from_events(group)
            self.store.insert_episode(episode)
            if self._embed_episode(episode):
                episode = self.store.get_episode(episode.id) or episode
            created.append(episode)

        logger.info(f"Consolidated {len(created)} workflows from session {session_id}")
        return created

    # =========================================================================
    # Recall
    # =========================================================================

    def recall(
        self,
        query: str,
        cwd: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> RetrievalResult:
        """Retrieve memories for a free-text problem description.

        The query is treated as a failed command with its own text as the
        error, so the error trigger always fires.
        """
        self._require_initialized()
        context = Context(
            command=query,
            cwd=cwd or "",
            exit_code=1,
            error_excerpt=query,
            project_hash=generate_project_hash(cwd),
        )
        return self.retrieval.retrieve(context, limit=limit)

    def retrieve(self, context: Context) -> RetrievalResult:
        self._require_initialized()
        return self.retrieval.retrieve(context)

    def search(self, terms: str, limit: int = 5) -> list[Episode]:
        """Plain text search over stored episodes."""
        return self.store.search_episodes(terms, limit=limit)

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        return self.store.get_episode(episode_id)

    # =========================================================================
    # Stats
    # =========================================================================

    def stats(self) -> dict[str, Any]:
        counts: dict[str, Any] = self.store.stats()
        counts["embedding_model"] = self._embedder.model_name if self._embedder else None
        counts["db_path"] = str(self._db_path)
        return counts
