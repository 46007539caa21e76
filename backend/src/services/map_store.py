"""MapStore - persistence collaborator for mind maps and their node trees.

The engine only ever reads whole-map snapshots and hands back deltas; every
delta is applied inside one transaction so an operation either lands
completely or not at all. Structural deltas carry the map version the caller
read, and are rejected with ``ConflictError`` if another write got there
first.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
import logging
import sqlite3
from typing import Iterable, List, Optional
import uuid

from ..models.generation import Feature, GenerationJob, JobStatus
from ..models.mindmap import (
    Citation,
    ComplexityLevel,
    MapNode,
    MindMap,
    MindMapMetadata,
    NodeShape,
    VisualMetadata,
)
from .database import DatabaseService
from .errors import ConflictError, MapEngineError, NotFoundError
from .map_tree import build_tree, iter_nodes

logger = logging.getLogger(__name__)


class MapStoreError(MapEngineError):
    """Raised when the store itself fails (I/O, constraint violations)."""


class MapStore(ABC):
    """Read/write contract the engine relies on."""

    @abstractmethod
    def get_map(self, map_id: str) -> Optional[MindMap]:
        """Return the map with its full node tree, or None."""

    @abstractmethod
    def create_map(self, mind_map: MindMap) -> MindMap:
        """Insert a map and its whole tree atomically."""

    @abstractmethod
    def apply_changes(
        self,
        map_id: str,
        expected_version: int,
        new_nodes: Iterable[MapNode] = (),
        updated_nodes: Iterable[MapNode] = (),
        deleted_node_ids: Iterable[str] = (),
        updated_at: Optional[datetime] = None,
    ) -> MindMap:
        """Apply one structural delta atomically and bump the map version.

        ``new_nodes`` are subtrees (children included); ``updated_nodes`` have
        their title/content rewritten in place; ``deleted_node_ids`` are
        removed together with their descendants and citations. The stored
        summary no longer describes the tree and is cleared.
        """

    @abstractmethod
    def update_summary(self, map_id: str, summary: str, updated_at: datetime) -> MindMap:
        """Store a new summary and ``updated_at`` without touching the tree."""

    @abstractmethod
    def create_job(self, job: GenerationJob) -> GenerationJob:
        """Record a generation run that has just started."""

    @abstractmethod
    def finish_job(
        self,
        job_id: str,
        status: JobStatus,
        completed_at: datetime,
        tokens_used: int = 0,
        estimated_cost: float = 0.0,
        error: Optional[str] = None,
        mind_map_id: Optional[str] = None,
    ) -> GenerationJob:
        """Close a job as completed or failed with its final accounting."""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        """Return one job, or None."""

    @abstractmethod
    def list_jobs(self, map_id: Optional[str] = None) -> List[GenerationJob]:
        """Return jobs oldest first, all of them or only those recorded against ``map_id``."""


class SqliteMapStore(MapStore):
    """MapStore backed by the shared SQLite database."""

    def __init__(self, db: Optional[DatabaseService] = None):
        """Initialize the store.

        Args:
            db: Database service instance. Creates new one if not provided.
        """
        self.db = db or DatabaseService()
        self.db.initialize()

    # ========================================
    # Reads
    # ========================================

    def get_map(self, map_id: str) -> Optional[MindMap]:
        conn = self.db.connect()
        try:
            return self._load_map(conn, map_id)
        finally:
            conn.close()

    def _load_map(self, conn: sqlite3.Connection, map_id: str) -> Optional[MindMap]:
        row = conn.execute("SELECT * FROM mind_maps WHERE id = ?", (map_id,)).fetchone()
        if row is None:
            return None

        node_rows = conn.execute(
            "SELECT * FROM map_nodes WHERE mind_map_id = ?", (map_id,)
        ).fetchall()
        citations_by_node: dict[str, List[Citation]] = {}
        if node_rows:
            citation_rows = conn.execute(
                """
                SELECT c.* FROM node_citations c
                JOIN map_nodes n ON n.id = c.node_id
                WHERE n.mind_map_id = ?
                ORDER BY c.node_id, c.position
                """,
                (map_id,),
            ).fetchall()
            for c in citation_rows:
                citations_by_node.setdefault(c["node_id"], []).append(
                    Citation(
                        id=c["id"],
                        title=c["title"],
                        url=c["url"],
                        summary=c["summary"],
                        author=c["author"],
                    )
                )

        nodes = [self._row_to_node(r, citations_by_node.get(r["id"], [])) for r in node_rows]
        return MindMap(
            id=row["id"],
            workspace_id=row["workspace_id"],
            title=row["title"],
            description=row["description"],
            summary=row["summary"],
            prompt=row["prompt"],
            provider=row["provider"],
            complexity=ComplexityLevel(row["complexity"]),
            version=row["version"],
            root_nodes=build_tree(nodes),
            metadata=MindMapMetadata(
                total_nodes=row["total_nodes"],
                max_depth=row["max_depth"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            ),
        )

    @staticmethod
    def _row_to_node(row: sqlite3.Row, citations: List[Citation]) -> MapNode:
        return MapNode(
            id=row["id"],
            parent_id=row["parent_id"],
            title=row["title"],
            content=row["content"],
            level=row["level"],
            order=row["sort_order"],
            visual=VisualMetadata(
                x=row["x"],
                y=row["y"],
                width=row["width"],
                height=row["height"],
                color=row["color"],
                shape=NodeShape(row["shape"]),
            ),
            is_collapsed=bool(row["is_collapsed"]),
            citations=citations,
        )

    # ========================================
    # Writes
    # ========================================

    def create_map(self, mind_map: MindMap) -> MindMap:
        now = _utcnow()
        created_at = mind_map.metadata.created_at or now
        updated_at = mind_map.metadata.updated_at or now

        conn = self.db.connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO mind_maps (
                        id, workspace_id, title, description, summary, prompt,
                        provider, complexity, version, total_nodes, max_depth,
                        created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, 0, 0, ?, ?)
                    """,
                    (
                        mind_map.id,
                        mind_map.workspace_id,
                        mind_map.title,
                        mind_map.description,
                        mind_map.summary,
                        mind_map.prompt,
                        mind_map.provider,
                        mind_map.complexity.value,
                        created_at.isoformat(),
                        updated_at.isoformat(),
                    ),
                )
                self._insert_nodes(conn, mind_map.id, mind_map.root_nodes, now)
                self._refresh_metadata(conn, mind_map.id, updated_at)
            logger.info(f"Created mind map {mind_map.id}")
        except sqlite3.Error as e:
            logger.error(f"Failed to create mind map {mind_map.id}: {e}")
            raise MapStoreError(f"Failed to create mind map: {e}", {"map_id": mind_map.id}) from e
        finally:
            conn.close()

        return self._require(mind_map.id)

    def apply_changes(
        self,
        map_id: str,
        expected_version: int,
        new_nodes: Iterable[MapNode] = (),
        updated_nodes: Iterable[MapNode] = (),
        deleted_node_ids: Iterable[str] = (),
        updated_at: Optional[datetime] = None,
    ) -> MindMap:
        now = updated_at or _utcnow()
        conn = self.db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE mind_maps SET version = version + 1, summary = NULL "
                    "WHERE id = ? AND version = ?",
                    (map_id, expected_version),
                )
                if cursor.rowcount == 0:
                    self._raise_missing_or_conflict(conn, map_id, expected_version)

                for node_id in deleted_node_ids:
                    self._delete_subtree(conn, node_id)

                for node in updated_nodes:
                    conn.execute(
                        """
                        UPDATE map_nodes SET title = ?, content = ?, updated_at = ?
                        WHERE id = ? AND mind_map_id = ?
                        """,
                        (node.title, node.content, now.isoformat(), node.id, map_id),
                    )

                self._insert_nodes(conn, map_id, list(new_nodes), now)
                self._refresh_metadata(conn, map_id, now)
        except sqlite3.Error as e:
            logger.error(f"Failed to apply changes to mind map {map_id}: {e}")
            raise MapStoreError(f"Failed to apply changes: {e}", {"map_id": map_id}) from e
        finally:
            conn.close()

        return self._require(map_id)

    def update_summary(self, map_id: str, summary: str, updated_at: datetime) -> MindMap:
        conn = self.db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE mind_maps SET summary = ?, updated_at = ? WHERE id = ?",
                    (summary, updated_at.isoformat(), map_id),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Mind map not found: {map_id}", {"map_id": map_id})
        except sqlite3.Error as e:
            logger.error(f"Failed to store summary for {map_id}: {e}")
            raise MapStoreError(f"Failed to store summary: {e}", {"map_id": map_id}) from e
        finally:
            conn.close()

        return self._require(map_id)

    # ========================================
    # Generation jobs
    # ========================================

    def create_job(self, job: GenerationJob) -> GenerationJob:
        conn = self.db.connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO generation_jobs (
                        id, mind_map_id, provider, feature, prompt, status, error,
                        tokens_used, estimated_cost, started_at, completed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        job.mind_map_id,
                        job.provider,
                        job.feature.value,
                        job.prompt,
                        job.status.value,
                        job.error,
                        job.tokens_used,
                        job.estimated_cost,
                        job.started_at.isoformat(),
                        job.completed_at.isoformat() if job.completed_at else None,
                    ),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to record generation job {job.id}: {e}")
            raise MapStoreError(f"Failed to record generation job: {e}", {"job_id": job.id}) from e
        finally:
            conn.close()
        return job

    def finish_job(
        self,
        job_id: str,
        status: JobStatus,
        completed_at: datetime,
        tokens_used: int = 0,
        estimated_cost: float = 0.0,
        error: Optional[str] = None,
        mind_map_id: Optional[str] = None,
    ) -> GenerationJob:
        conn = self.db.connect()
        try:
            with conn:
                cursor = conn.execute(
                    """
                    UPDATE generation_jobs
                    SET status = ?, error = ?, tokens_used = ?, estimated_cost = ?,
                        completed_at = ?, mind_map_id = COALESCE(?, mind_map_id)
                    WHERE id = ?
                    """,
                    (
                        status.value,
                        error,
                        tokens_used,
                        estimated_cost,
                        completed_at.isoformat(),
                        mind_map_id,
                        job_id,
                    ),
                )
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Generation job not found: {job_id}", {"job_id": job_id})
        except sqlite3.Error as e:
            logger.error(f"Failed to finish generation job {job_id}: {e}")
            raise MapStoreError(f"Failed to finish generation job: {e}", {"job_id": job_id}) from e
        finally:
            conn.close()

        job = self.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Generation job not found: {job_id}", {"job_id": job_id})
        return job

    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        conn = self.db.connect()
        try:
            row = conn.execute(
                "SELECT * FROM generation_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_job(row) if row else None

    def list_jobs(self, map_id: Optional[str] = None) -> List[GenerationJob]:
        query = "SELECT * FROM generation_jobs"
        params: tuple = ()
        if map_id is not None:
            query += " WHERE mind_map_id = ?"
            params = (map_id,)
        conn = self.db.connect()
        try:
            rows = conn.execute(query + " ORDER BY started_at, rowid", params).fetchall()
        finally:
            conn.close()
        return [self._row_to_job(r) for r in rows]

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> GenerationJob:
        return GenerationJob(
            id=row["id"],
            mind_map_id=row["mind_map_id"],
            provider=row["provider"],
            feature=Feature(row["feature"]),
            prompt=row["prompt"],
            status=JobStatus(row["status"]),
            error=row["error"],
            tokens_used=row["tokens_used"],
            estimated_cost=row["estimated_cost"],
            started_at=datetime.fromisoformat(row["started_at"]),
            completed_at=(
                datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
            ),
        )

    # ========================================
    # Helpers
    # ========================================

    def _require(self, map_id: str) -> MindMap:
        mind_map = self.get_map(map_id)
        if mind_map is None:
            raise NotFoundError(f"Mind map not found: {map_id}", {"map_id": map_id})
        return mind_map

    @staticmethod
    def _raise_missing_or_conflict(
        conn: sqlite3.Connection, map_id: str, expected_version: int
    ) -> None:
        row = conn.execute("SELECT version FROM mind_maps WHERE id = ?", (map_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Mind map not found: {map_id}", {"map_id": map_id})
        logger.warning(
            f"Version conflict on mind map {map_id}",
            extra={"expected": expected_version, "actual": row["version"]},
        )
        raise ConflictError(
            f"Mind map {map_id} was modified concurrently",
            {"map_id": map_id, "expected_version": expected_version, "version": row["version"]},
        )

    def _insert_nodes(
        self,
        conn: sqlite3.Connection,
        map_id: str,
        nodes: List[MapNode],
        now: datetime,
    ) -> None:
        for node in iter_nodes(nodes):
            conn.execute(
                """
                INSERT INTO map_nodes (
                    id, mind_map_id, parent_id, title, content, level, sort_order,
                    x, y, width, height, color, shape, is_collapsed,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    node.id,
                    map_id,
                    node.parent_id,
                    node.title,
                    node.content,
                    node.level,
                    node.order,
                    node.visual.x,
                    node.visual.y,
                    node.visual.width,
                    node.visual.height,
                    node.visual.color,
                    node.visual.shape.value,
                    int(node.is_collapsed),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            for position, citation in enumerate(node.citations):
                citation.id = citation.id or str(uuid.uuid4())
                conn.execute(
                    """
                    INSERT INTO node_citations (id, node_id, position, title, url, summary, author)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        citation.id,
                        node.id,
                        position,
                        citation.title,
                        citation.url,
                        citation.summary,
                        citation.author,
                    ),
                )

    @staticmethod
    def _delete_subtree(conn: sqlite3.Connection, node_id: str) -> None:
        rows = conn.execute(
            """
            WITH RECURSIVE subtree(id) AS (
                SELECT id FROM map_nodes WHERE id = ?
                UNION ALL
                SELECT n.id FROM map_nodes n JOIN subtree s ON n.parent_id = s.id
            )
            SELECT id FROM subtree
            """,
            (node_id,),
        ).fetchall()
        ids = [(r["id"],) for r in rows]
        conn.executemany("DELETE FROM node_citations WHERE node_id = ?", ids)
        conn.executemany("DELETE FROM map_nodes WHERE id = ?", ids)

    @staticmethod
    def _refresh_metadata(conn: sqlite3.Connection, map_id: str, updated_at: datetime) -> None:
        stats = conn.execute(
            "SELECT COUNT(*) AS total, COALESCE(MAX(level), 0) AS depth "
            "FROM map_nodes WHERE mind_map_id = ?",
            (map_id,),
        ).fetchone()
        conn.execute(
            "UPDATE mind_maps SET total_nodes = ?, max_depth = ?, updated_at = ? WHERE id = ?",
            (stats["total"], stats["depth"], updated_at.isoformat(), map_id),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["MapStore", "MapStoreError", "SqliteMapStore"]
