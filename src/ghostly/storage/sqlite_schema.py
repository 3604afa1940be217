"""SQLite schema for Ghostly Memory Bank persistence.

Raw events, synthesized episodes, their embeddings, and the project and
session bookkeeping used to detect context changes.
"""

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Terminal events as captured by the shell hook
CREATE TABLE IF NOT EXISTS raw_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    cwd TEXT NOT NULL DEFAULT '',
    git_branch TEXT,
    command TEXT NOT NULL,
    exit_code INTEGER,
    stdout_excerpt TEXT NOT NULL DEFAULT '',
    stderr_excerpt TEXT NOT NULL DEFAULT '',
    project_hash TEXT NOT NULL DEFAULT 'unknown',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_events_session ON raw_events(session_id);
CREATE INDEX IF NOT EXISTS idx_events_project ON raw_events(project_hash);
CREATE INDEX IF NOT EXISTS idx_events_timestamp ON raw_events(timestamp);

-- Episodes (problem/fix records synthesized from events)
CREATE TABLE IF NOT EXISTS episodes (
    id TEXT PRIMARY KEY,
    project_hash TEXT NOT NULL,
    summary TEXT NOT NULL,
    problem TEXT NOT NULL DEFAULT '',
    environment TEXT NOT NULL DEFAULT '',
    fix TEXT NOT NULL DEFAULT '',
    keywords_json TEXT NOT NULL DEFAULT '[]',
    event_ids_json TEXT NOT NULL DEFAULT '[]',
    embedding_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_episodes_project ON episodes(project_hash);
CREATE INDEX IF NOT EXISTS idx_episodes_created ON episodes(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_episodes_embedding ON episodes(embedding_id);

-- Embedding vectors (JSON-encoded floats)
CREATE TABLE IF NOT EXISTS embeddings (
    id TEXT PRIMARY KEY,
    episode_id TEXT NOT NULL,
    model TEXT NOT NULL,
    dimension INTEGER NOT NULL,
    vector_json TEXT NOT NULL,
    created_at TEXT NOT NULL,

    FOREIGN KEY (episode_id) REFERENCES episodes(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_embeddings_episode ON embeddings(episode_id);

-- Projects seen by the capture pipeline
CREATE TABLE IF NOT EXISTS projects (
    project_hash TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    root_path TEXT NOT NULL DEFAULT '',
    first_seen TEXT NOT NULL DEFAULT (datetime('now')),
    last_seen TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Terminal sessions
CREATE TABLE IF NOT EXISTS sessions (
    session_id TEXT PRIMARY KEY,
    cwd TEXT NOT NULL DEFAULT '',
    git_branch TEXT,
    started_at TEXT NOT NULL DEFAULT (datetime('now')),
    last_activity TEXT NOT NULL DEFAULT (datetime('now')),
    ended_at TEXT
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL,
    description TEXT
);
"""


def initialize_database(db_path: Path) -> sqlite3.Connection:
    """Create or open the SQLite database with full schema."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=5000")

    conn.executescript(SCHEMA_SQL)

    existing = conn.execute(
        "SELECT version FROM schema_version WHERE version = ?", (SCHEMA_VERSION,)
    ).fetchone()
    if not existing:
        conn.execute(
            "INSERT INTO schema_version (version, applied_at, description) VALUES (?, datetime('now'), ?)",
            (SCHEMA_VERSION, "Initial Ghostly schema"),
        )
        conn.commit()

    return conn
