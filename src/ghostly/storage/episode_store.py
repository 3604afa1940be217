"""Episode store: SQLite persistence for events, episodes and embeddings.

The canonical store behind the retrieval pipeline. Every statement is
parameterized; user-controlled text never reaches the SQL string itself.
sqlite3 failures surface as StoreError.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator, Optional

from ghostly.errors import StoreError
from ghostly.models.episode import EmbeddingRecord, Episode
from ghostly.models.event import RawEvent
from ghostly.storage.base import EpisodeRepository
from ghostly.storage.sqlite_schema import initialize_database

logger = logging.getLogger(__name__)


def _escape_like(text: str) -> str:
    """Escape LIKE wildcards so the query matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class EpisodeStore(EpisodeRepository):
    """Manages the SQLite database behind Ghostly."""

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def initialize(self) -> None:
        """Create/open the database."""
        try:
            self._conn = initialize_database(self._db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database at {self._db_path}: {e}") from e
        logger.info(f"Database initialized at {self._db_path}")

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("EpisodeStore not initialized. Call initialize() first.")
        return self._conn

    @contextmanager
    def _guard(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run a unit of work, translating sqlite errors into StoreError."""
        conn = self.conn
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Failed to {action}: {e}") from e

    # =========================================================================
    # Raw events
    # =========================================================================

    def insert_event(self, event: RawEvent) -> int:
        """Insert a raw terminal event and return its row id."""
        with self._guard("insert event") as conn:
            cursor = conn.execute(
                """INSERT INTO raw_events (
                    session_id, timestamp, cwd, git_branch, command, exit_code,
                    stdout_excerpt, stderr_excerpt, project_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event.session_id, event.timestamp.isoformat(), event.cwd,
                    event.git_branch, event.command, event.exit_code,
                    event.stdout_excerpt, event.stderr_excerpt, event.project_hash,
                ),
            )
            conn.commit()
        return cursor.lastrowid

    def get_session_events(self, session_id: str) -> list[RawEvent]:
        """All events of a session in chronological order."""
        with self._guard("read session events") as conn:
            rows = conn.execute(
                "SELECT * FROM raw_events WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
                (session_id,),
            ).fetchall()
        return [self._row_to_event(r) for r in rows]

    def get_recent_events(
        self,
        limit: int = 100,
        project_hash: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[RawEvent]:
        """Most recent events first, optionally scoped to a project/time."""
        query = "SELECT * FROM raw_events WHERE 1=1"
        params: list[Any] = []
        if project_hash:
            query += " AND project_hash = ?"
            params.append(project_hash)
        if since:
            query += " AND timestamp >= ?"
            params.append(since.isoformat())
        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        with self._guard("read recent events") as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    # =========================================================================
    # Episodes
    # =========================================================================

    def insert_episode(self, episode: Episode) -> str:
        """Persist a new episode; returns its id."""
        now = datetime.now().isoformat()
        with self._guard("insert episode") as conn:
            conn.execute(
                """INSERT INTO episodes (
                    id, project_hash, summary, problem, environment, fix,
                    keywords_json, event_ids_json, embedding_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    episode.id, episode.project_hash, episode.summary, episode.problem,
                    episode.environment, episode.fix, json.dumps(episode.keywords),
                    json.dumps(episode.event_ids), episode.embedding_id,
                    episode.created_at.isoformat(), now,
                ),
            )
            conn.commit()
        return episode.id

    def update_episode(self, episode: Episode) -> bool:
        """Overwrite the mutable fields of an existing episode."""
        with self._guard("update episode") as conn:
            cursor = conn.execute(
                """UPDATE episodes SET
                    summary = ?, problem = ?, environment = ?, fix = ?,
                    keywords_json = ?, embedding_id = ?, updated_at = ?
                WHERE id = ?""",
                (
                    episode.summary, episode.problem, episode.environment, episode.fix,
                    json.dumps(episode.keywords), episode.embedding_id,
                    datetime.now().isoformat(), episode.id,
                ),
            )
            conn.commit()
        return cursor.rowcount > 0

    def find_episode_by_events(self, event_ids: list[int]) -> Optional[Episode]:
        """Episode built from exactly these events, if one was stored."""
        with self._guard("find episode by events") as conn:
            row = conn.execute(
                "SELECT * FROM episodes WHERE event_ids_json = ? LIMIT 1",
                (json.dumps(event_ids),),
            ).fetchone()
        return self._row_to_episode(row) if row else None

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._guard("read episode") as conn:
            row = conn.execute("SELECT * FROM episodes WHERE id = ?", (episode_id,)).fetchone()
        return self._row_to_episode(row) if row else None

    def get_recent_episodes(self, project_hash: str, limit: int = 10) -> list[Episode]:
        """Newest episodes of one project."""
        with self._guard("read recent episodes") as conn:
            rows = conn.execute(
                """SELECT * FROM episodes WHERE project_hash = ?
                ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (project_hash, limit),
            ).fetchall()
        return [self._row_to_episode(r) for r in rows]

    def search_episodes(self, query: str, limit: int = 5) -> list[Episode]:
        """Episodes whose summary, problem or keywords contain the query text.

        Newest first. An empty query matches nothing.
        """
        if not query or not query.strip():
            return []
        pattern = f"%{_escape_like(query)}%"
        with self._guard("search episodes") as conn:
            rows = conn.execute(
                """SELECT * FROM episodes
                WHERE summary LIKE ? ESCAPE '\\'
                   OR problem LIKE ? ESCAPE '\\'
                   OR keywords_json LIKE ? ESCAPE '\\'
                ORDER BY created_at DESC, rowid DESC LIMIT ?""",
                (pattern, pattern, pattern, limit),
            ).fetchall()
        return [self._row_to_episode(r) for r in rows]

    def count_episodes(self, project_hash: Optional[str] = None) -> int:
        with self._guard("count episodes") as conn:
            if project_hash:
                row = conn.execute(
                    "SELECT COUNT(*) FROM episodes WHERE project_hash = ?", (project_hash,)
                ).fetchone()
            else:
                row = conn.execute("SELECT COUNT(*) FROM episodes").fetchone()
        return row[0]

    # =========================================================================
    # Embeddings
    # =========================================================================

    def insert_embedding(self, episode_id: str, model: str, vector: list[float]) -> str:
        """Store an embedding vector for an episode; returns the embedding id."""
        record = EmbeddingRecord(episode_id=episode_id, model=model, vector=[float(v) for v in vector])
        with self._guard("insert embedding") as conn:
            conn.execute(
                """INSERT INTO embeddings (id, episode_id, model, dimension, vector_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    record.id, record.episode_id, record.model, record.dimension,
                    json.dumps(record.vector), record.created_at.isoformat(),
                ),
            )
            conn.commit()
        return record.id

    def get_embedding(self, episode_id: str) -> Optional[EmbeddingRecord]:
        """Latest embedding stored for an episode, or None."""
        with self._guard("read embedding") as conn:
            row = conn.execute(
                """SELECT * FROM embeddings WHERE episode_id = ?
                ORDER BY created_at DESC LIMIT 1""",
                (episode_id,),
            ).fetchone()
        if not row:
            return None
        return EmbeddingRecord(
            id=row["id"],
            episode_id=row["episode_id"],
            model=row["model"],
            vector=json.loads(row["vector_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # =========================================================================
    # Projects
    # =========================================================================

    def upsert_project(self, project_hash: str, name: str = "", root_path: str = "") -> None:
        with self._guard("upsert project") as conn:
            conn.execute(
                """INSERT INTO projects (project_hash, name, root_path)
                VALUES (?, ?, ?)
                ON CONFLICT(project_hash) DO UPDATE SET
                    name = excluded.name,
                    root_path = excluded.root_path,
                    last_seen = datetime('now')""",
                (project_hash, name, root_path),
            )
            conn.commit()

    def get_project(self, project_hash: str) -> Optional[dict[str, Any]]:
        with self._guard("read project") as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE project_hash = ?", (project_hash,)
            ).fetchone()
        return dict(row) if row else None

    # =========================================================================
    # Sessions
    # =========================================================================

    def get_or_create_session(
        self,
        session_id: str,
        cwd: str = "",
        git_branch: Optional[str] = None,
    ) -> dict[str, Any]:
        with self._guard("open session") as conn:
            conn.execute(
                """INSERT OR IGNORE INTO sessions (session_id, cwd, git_branch)
                VALUES (?, ?, ?)""",
                (session_id, cwd, git_branch),
            )
            conn.commit()
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return dict(row)

    def get_session(self, session_id: str) -> Optional[dict[str, Any]]:
        with self._guard("read session") as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        return dict(row) if row else None

    def update_session(
        self,
        session_id: str,
        cwd: Optional[str] = None,
        git_branch: Optional[str] = None,
    ) -> None:
        """Touch session activity, recording the latest cwd/branch when known."""
        with self._guard("update session") as conn:
            conn.execute(
                """UPDATE sessions SET
                    cwd = COALESCE(?, cwd),
                    git_branch = COALESCE(?, git_branch),
                    last_activity = datetime('now')
                WHERE session_id = ?""",
                (cwd or None, git_branch or None, session_id),
            )
            conn.commit()

    def end_session(self, session_id: str) -> bool:
        with self._guard("end session") as conn:
            cursor = conn.execute(
                "UPDATE sessions SET ended_at = datetime('now') WHERE session_id = ?",
                (session_id,),
            )
            conn.commit()
        return cursor.rowcount > 0

    def get_latest_session_id(self) -> Optional[str]:
        with self._guard("read sessions") as conn:
            row = conn.execute(
                "SELECT session_id FROM sessions ORDER BY last_activity DESC, rowid DESC LIMIT 1"
            ).fetchone()
        return row["session_id"] if row else None

    # =========================================================================
    # Stats
    # =========================================================================

    def stats(self) -> dict[str, int]:
        """Row counts for every table."""
        counts = {}
        with self._guard("read stats") as conn:
            for key, table in (
                ("events", "raw_events"),
                ("episodes", "episodes"),
                ("embeddings", "embeddings"),
                ("projects", "projects"),
                ("sessions", "sessions"),
            ):
                counts[key] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        return counts

    # =========================================================================
    # Row conversion
    # =========================================================================

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> RawEvent:
        return RawEvent(
            id=row["id"],
            session_id=row["session_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            cwd=row["cwd"],
            git_branch=row["git_branch"],
            command=row["command"],
            exit_code=row["exit_code"],
            stdout_excerpt=row["stdout_excerpt"],
            stderr_excerpt=row["stderr_excerpt"],
            project_hash=row["project_hash"],
        )

    @staticmethod
    def _row_to_episode(row: sqlite3.Row) -> Episode:
        return Episode(
            id=row["id"],
            project_hash=row["project_hash"],
            summary=row["summary"],
            problem=row["problem"],
            environment=row["environment"],
            fix=row["fix"],
            keywords=json.loads(row["keywords_json"]),
            event_ids=json.loads(row["event_ids_json"]),
            embedding_id=row["embedding_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


def window_start(hours: float, now: Optional[datetime] = None) -> datetime:
    """Start of a look-back window ending at now."""
    return (now or datetime.now()) - timedelta(hours=hours)
