"""SQLite database helpers for the mind map schema."""

from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Iterable

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DATA_DIR = PROJECT_ROOT / "data"
DEFAULT_DB_PATH = DATA_DIR / "mindmaps.db"

DDL_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS mind_maps (
        id TEXT PRIMARY KEY,
        workspace_id TEXT,
        title TEXT NOT NULL,
        description TEXT,
        summary TEXT,
        prompt TEXT,
        provider TEXT,
        complexity TEXT NOT NULL DEFAULT 'moderate',
        version INTEGER NOT NULL DEFAULT 1,
        total_nodes INTEGER NOT NULL DEFAULT 0,
        max_depth INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_maps_workspace ON mind_maps(workspace_id)",
    """
    CREATE TABLE IF NOT EXISTS map_nodes (
        id TEXT PRIMARY KEY,
        mind_map_id TEXT NOT NULL,
        parent_id TEXT,
        title TEXT,
        content TEXT NOT NULL,
        level INTEGER NOT NULL,
        sort_order INTEGER NOT NULL,
        x REAL NOT NULL DEFAULT 0,
        y REAL NOT NULL DEFAULT 0,
        width REAL NOT NULL DEFAULT 120,
        height REAL NOT NULL DEFAULT 80,
        color TEXT,
        shape TEXT NOT NULL DEFAULT 'rectangle',
        is_collapsed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_nodes_map ON map_nodes(mind_map_id)",
    "CREATE INDEX IF NOT EXISTS idx_nodes_parent ON map_nodes(parent_id, sort_order)",
    """
    CREATE TABLE IF NOT EXISTS node_citations (
        id TEXT PRIMARY KEY,
        node_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        title TEXT NOT NULL,
        url TEXT,
        summary TEXT,
        author TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_citations_node ON node_citations(node_id, position)",
    """
    CREATE TABLE IF NOT EXISTS generation_jobs (
        id TEXT PRIMARY KEY,
        mind_map_id TEXT,
        provider TEXT NOT NULL,
        feature TEXT NOT NULL,
        prompt TEXT NOT NULL,
        status TEXT NOT NULL,
        error TEXT,
        tokens_used INTEGER NOT NULL DEFAULT 0,
        estimated_cost REAL NOT NULL DEFAULT 0,
        started_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_jobs_map ON generation_jobs(mind_map_id, started_at)",
)


class DatabaseService:
    """Manage SQLite connections and schema initialization."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        """Return a sqlite3 connection with the proper data directory created."""
        self._ensure_directory()
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self, statements: Iterable[str] | None = None) -> Path:
        """Create all schema artifacts required by the map store."""
        conn = self.connect()
        try:
            with conn:  # Transactional apply of DDL
                for statement in statements or DDL_STATEMENTS:
                    conn.execute(statement)
        finally:
            conn.close()
        return self.db_path


def init_database(db_path: str | Path | None = None) -> Path:
    """Convenience wrapper used at startup."""
    return DatabaseService(db_path).initialize()


__all__ = ["DatabaseService", "init_database", "DEFAULT_DB_PATH"]
