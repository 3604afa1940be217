"""Embedding functions for Ghostly Memory Bank.

Priority order:
1. sentence-transformers (primary, CPU-based, works offline)
2. Ollama (alternative, if running locally)
3. Fallback hash (last resort, no semantic meaning)

All implementations return numpy float32 arrays. Any failure to produce a
vector surfaces as ProviderError.
"""

import hashlib
import logging
import threading
from typing import Any, Optional, Protocol

import httpx
import numpy as np

from ghostly.config import (
    EMBEDDING_DIM,
    OLLAMA_BASE_URL,
    OLLAMA_EMBEDDING_MODEL,
    SBERT_MODEL,
)
from ghostly.errors import ConfigurationError, ProviderError
from ghostly.models.context import Context
from ghostly.models.episode import Episode

logger = logging.getLogger(__name__)


class EmbeddingFunction(Protocol):
    """Protocol for embedding functions."""

    def name(self) -> str: ...
    def embed(self, texts: list[str]) -> list[np.ndarray]: ...
    def embed_query(self, text: str) -> np.ndarray: ...


class SentenceTransformerEmbeddings:
    """Primary embedding function using sentence-transformers."""

    def __init__(self, model_name: str = SBERT_MODEL):
        self.model_name = model_name
        self._model = None
        self._name = f"sbert:{model_name}"

    def _load_model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ProviderError("sentence-transformers is not installed") from e
            logger.info(f"Loading sentence-transformer model: {self.model_name}")
            try:
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                raise ProviderError(f"Cannot load model {self.model_name}: {e}") from e
        return self._model

    def name(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return EMBEDDING_DIM

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        model = self._load_model()
        try:
            embeddings = model.encode(texts, convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            raise ProviderError(f"sentence-transformers encode failed: {e}") from e
        return [row.astype(np.float32) for row in embeddings]

    def embed_query(self, text: str) -> np.ndarray:
        if not text or not text.strip():
            return np.zeros(self.dimension, dtype=np.float32)
        return self.embed([text])[0]


class OllamaEmbeddings:
    """Alternative embedding function using the Ollama HTTP API."""

    def __init__(
        self,
        model: str = OLLAMA_EMBEDDING_MODEL,
        base_url: str = OLLAMA_BASE_URL,
        timeout: float = 60.0,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._dimension: Optional[int] = None
        self._name = f"ollama:{model}"

    def name(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return self._dimension or 768

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        return [self._embed_single(text) for text in texts]

    def _embed_single(self, text: str) -> np.ndarray:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": self.model, "prompt": text},
                )
                response.raise_for_status()
                embedding = response.json()["embedding"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise ProviderError(f"Ollama embed failed: {e}") from e
        if self._dimension is None:
            self._dimension = len(embedding)
        return np.array(embedding, dtype=np.float32)

    def embed_query(self, text: str) -> np.ndarray:
        return self._embed_single(text)


class FallbackEmbeddings:
    """Hash-based pseudo-embeddings when nothing else is available.

    Deterministic per text. No semantic meaning, only use as last resort.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM):
        self._dimension = dimension
        self._name = "fallback"
        logger.warning("Using fallback embeddings - no semantic search available")

    def name(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, texts: list[str]) -> list[np.ndarray]:
        return [self._hash_embed(text) for text in texts]

    def _hash_embed(self, text: str) -> np.ndarray:
        values = np.empty(self._dimension, dtype=np.float32)
        for i in range(self._dimension):
            hash_input = f"{text}:{i}".encode()
            hash_val = int(hashlib.md5(hash_input).hexdigest(), 16)
            values[i] = ((hash_val % 10000) / 5000) - 1
        return values

    def embed_query(self, text: str) -> np.ndarray:
        return self._hash_embed(text)


def check_sentence_transformers_available() -> bool:
    try:
        import sentence_transformers  # noqa: F401
        return True
    except ImportError:
        return False


def check_ollama_available(base_url: str = OLLAMA_BASE_URL, model: str = OLLAMA_EMBEDDING_MODEL) -> bool:
    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(f"{base_url.rstrip('/')}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return model.split(":")[0] in model_names
    except (httpx.HTTPError, ValueError):
        return False


def get_embedding_function(
    prefer: str = "auto",
    sbert_model: str = SBERT_MODEL,
    ollama_model: str = OLLAMA_EMBEDDING_MODEL,
    ollama_base_url: str = OLLAMA_BASE_URL,
) -> EmbeddingFunction:
    """Get the best available embedding function."""
    if prefer == "auto":
        if check_sentence_transformers_available():
            logger.info("Using sentence-transformers embeddings")
            return SentenceTransformerEmbeddings(sbert_model)
        if check_ollama_available(ollama_base_url, ollama_model):
            logger.info("Using Ollama embeddings")
            return OllamaEmbeddings(ollama_model, ollama_base_url)
        logger.warning("No embedding model available, using fallback")
        return FallbackEmbeddings()
    elif prefer == "sbert":
        return SentenceTransformerEmbeddings(sbert_model)
    elif prefer == "ollama":
        return OllamaEmbeddings(ollama_model, ollama_base_url)
    elif prefer == "fallback":
        return FallbackEmbeddings()
    else:
        raise ConfigurationError(f"Unknown embedding preference: {prefer}")


# =============================================================================
# Prompt construction
# =============================================================================

def format_episode_for_embedding(episode: Episode) -> str:
    """Render the text that represents an episode in vector space."""
    parts = []
    if episode.problem:
        parts.append(f"Problem: {episode.problem}")
    if episode.environment:
        parts.append(f"Environment: {episode.environment}")
    if episode.fix:
        parts.append(f"Fix: {episode.fix}")
    if episode.keywords:
        parts.append(f"Keywords: {', '.join(episode.keywords)}")
    if episode.summary:
        parts.append(f"Summary: {episode.summary}")
    return "\n".join(parts)


def build_query_text(context: Context) -> str:
    """Render the text that represents a retrieval context."""
    parts = []
    if context.error_excerpt:
        parts.append(f"Error: {context.error_excerpt}")
    if context.command:
        parts.append(f"Command: {context.command}")
    if context.cwd:
        parts.append(f"Directory: {context.cwd}")
    if context.git_branch:
        parts.append(f"Branch: {context.git_branch}")
    return " | ".join(parts)


def format_context_for_embedding(context: Context) -> str:
    """Render a context in the same shape as a stored episode.

    Query and corpus share the Problem/Environment/Fix/Summary layout so
    their vectors are comparable.
    """
    parts = []
    if context.error_excerpt:
        parts.append(f"Problem: {context.error_excerpt}")
    if context.cwd:
        parts.append(f"Environment: {context.cwd}")
    if context.command:
        parts.append(f"Fix: {context.command}")
    query = build_query_text(context)
    if query:
        parts.append(f"Summary: {query}")
    return "\n".join(parts)


# =============================================================================
# Bounded embedding calls
# =============================================================================

class TimedEmbedder:
    """Runs each embedding call on a daemon thread and abandons it after a timeout.

    A timed-out call is reported as ProviderError so the caller can fall back
    instead of blocking on a slow model load or network request. The abandoned
    thread never holds up interpreter exit. While it is still running, later
    calls fail fast rather than queueing behind it.
    """

    def __init__(self, embedding_fn: EmbeddingFunction, timeout_seconds: float):
        self.embedding_fn = embedding_fn
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._pending: Optional[threading.Thread] = None

    @property
    def model_name(self) -> str:
        return self.embedding_fn.name()

    def embed_text(self, text: str) -> list[float]:
        outcome: dict[str, Any] = {}

        def run():
            try:
                outcome["vector"] = self.embedding_fn.embed_query(text)
            except Exception as e:
                outcome["error"] = e

        with self._lock:
            if self._pending is not None and self._pending.is_alive():
                raise ProviderError(f"Earlier embedding call still running ({self.model_name})")
            worker = threading.Thread(target=run, daemon=True, name="ghostly-embed")
            self._pending = worker
            worker.start()

        worker.join(self.timeout_seconds)
        if worker.is_alive():
            raise ProviderError(
                f"Embedding timed out after {self.timeout_seconds}s ({self.model_name})"
            )

        error = outcome.get("error")
        if isinstance(error, ProviderError):
            raise error
        if error is not None:
            raise ProviderError(f"Embedding failed ({self.model_name}): {error}") from error
        return [float(v) for v in np.asarray(outcome["vector"], dtype=np.float32).ravel()]

    def embed_episode(self, episode: Episode) -> list[float]:
        return self.embed_text(format_episode_for_embedding(episode))

    def embed_context(self, context: Context) -> list[float]:
        return self.embed_text(format_context_for_embedding(context))

    def shutdown(self) -> None:
        """Forget any abandoned call; its daemon thread dies with the process."""
        with self._lock:
            self._pending = None
