"""Shared test fixtures for Ghostly."""

import hashlib
import tempfile
import time
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pytest

from ghostly.errors import ProviderError
from ghostly.memory_bank import MemoryBank
from ghostly.models.event import RawEvent
from ghostly.settings import Settings, StorageSettings


class FakeEmbeddings:
    """Deterministic bag-of-words vectors: shared tokens mean high cosine."""

    def __init__(self, dimension: int = 64):
        self._dimension = dimension

    def name(self) -> str:
        return "fake"

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, texts):
        return [self.embed_query(t) for t in texts]

    def embed_query(self, text):
        vec = np.zeros(self._dimension, dtype=np.float32)
        for token in text.lower().replace("|", " ").replace(":", " ").split():
            idx = int(hashlib.md5(token.encode()).hexdigest(), 16) % self._dimension
            vec[idx] += 1.0
        return vec


class FailingEmbeddings(FakeEmbeddings):
    """Provider that is always down."""

    def name(self) -> str:
        return "failing"

    def embed_query(self, text):
        raise ProviderError("model unavailable")


class SlowEmbeddings(FakeEmbeddings):
    """Provider that takes longer than any sensible timeout."""

    def __init__(self, delay: float = 1.0):
        super().__init__()
        self.delay = delay

    def name(self) -> str:
        return "slow"

    def embed_query(self, text):
        time.sleep(self.delay)
        return super().embed_query(text)


@pytest.fixture
def temp_dir():
    """Temporary directory for test data."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def store(temp_dir):
    """EpisodeStore with temporary SQLite database."""
    from ghostly.storage.episode_store import EpisodeStore

    s = EpisodeStore(db_path=temp_dir / "test.db")
    s.initialize()
    yield s
    s.close()


@pytest.fixture
def settings(temp_dir):
    """Default settings pointing at the temporary directory."""
    return Settings(storage=StorageSettings(db_path=temp_dir / "bank.db"))


@pytest.fixture
def fake_embedder():
    return FakeEmbeddings()


@pytest.fixture
def bank(settings, fake_embedder):
    """MemoryBank with a fake embedding provider."""
    b = MemoryBank(settings=settings, embedding_fn=fake_embedder)
    b.initialize()
    yield b
    b.close()


@pytest.fixture
def project_dir(temp_dir):
    """A directory recognized as a project root."""
    root = temp_dir / "webapp"
    root.mkdir()
    (root / "package.json").write_text("{}")
    return root


@pytest.fixture
def sample_events():
    """A five-command workflow in one project, one minute apart."""
    start = datetime(2024, 5, 1, 10, 0, 0)
    commands = [
        ("npm install", 0, ""),
        ("npm run build", 1, "Error: Module not found\nat resolve (webpack)\nat compile"),
        ("npm install react-dom", 0, ""),
        ("npm run build", 0, ""),
        ("git commit -m 'fix build'", 0, ""),
    ]
    return [
        RawEvent(
            id=i + 1,
            session_id="sess-1",
            timestamp=start + timedelta(minutes=i),
            cwd="/home/dev/webapp",
            git_branch="main",
            command=cmd,
            exit_code=code,
            stderr_excerpt=stderr,
            project_hash="proj1234",
        )
        for i, (cmd, code, stderr) in enumerate(commands)
    ]
