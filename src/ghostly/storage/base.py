"""Episode store protocol consumed by the retrieval pipeline."""

from abc import ABC, abstractmethod
from typing import Optional

from ghostly.models.episode import EmbeddingRecord, Episode


class EpisodeRepository(ABC):
    """The read/insert surface the retrieval core needs from persistence."""

    @abstractmethod
    def get_recent_episodes(self, project_hash: str, limit: int = 10) -> list[Episode]: ...

    @abstractmethod
    def search_episodes(self, query: str, limit: int = 5) -> list[Episode]: ...

    @abstractmethod
    def get_embedding(self, episode_id: str) -> Optional[EmbeddingRecord]: ...

    @abstractmethod
    def insert_episode(self, episode: Episode) -> str: ...

    @abstractmethod
    def update_episode(self, episode: Episode) -> bool: ...
