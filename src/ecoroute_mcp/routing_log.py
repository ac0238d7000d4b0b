"""SQLite log of routing decisions.

One row per detection: query, chosen ecosystem, confidence, the doc sources
handed to retrieval, the stage that decided and how long it took. Used for
analytics on how often each stage fires and how confident it is.
"""

import json
import sqlite3
import threading
import time
import uuid
from pathlib import Path

from loguru import logger

from ecoroute_mcp.models import DetectionResult


class RoutingLog:
    """Append-only SQLite table of routing decisions."""

    def __init__(self, db_path: Path):
        self._db_path = db_path
        self._lock = threading.Lock()

        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 5000")

        self._create_tables()
        logger.debug(f"RoutingLog initialized at {db_path}")

    def _create_tables(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS ecosystem_routing_logs (
                id TEXT PRIMARY KEY,
                query TEXT NOT NULL,
                ecosystem_id TEXT,
                confidence REAL CHECK (confidence BETWEEN 0 AND 100),
                doc_sources_used TEXT NOT NULL DEFAULT '[]',
                detection_stage TEXT,
                latency_ms INTEGER,
                created_at REAL NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_routing_logs_ecosystem
            ON ecosystem_routing_logs(ecosystem_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_routing_logs_created
            ON ecosystem_routing_logs(created_at)
        """)
        self._conn.commit()

    def record(self, query: str, result: DetectionResult, latency_ms: int) -> str:
        """Store one decision. Returns the row id."""
        row_id = uuid.uuid4().hex[:12]
        with self._lock:
            self._conn.execute(
                """INSERT INTO ecosystem_routing_logs
                   (id, query, ecosystem_id, confidence, doc_sources_used,
                    detection_stage, latency_ms, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    row_id,
                    query,
                    result.ecosystem.id,
                    result.confidence,
                    json.dumps(result.suggested_doc_sources),
                    result.stage,
                    latency_ms,
                    time.time(),
                ),
            )
            self._conn.commit()
        return row_id

    def recent(self, limit: int = 20) -> list[dict]:
        """Most recent decisions, newest first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT * FROM ecosystem_routing_logs
                   ORDER BY created_at DESC LIMIT ?""",
                (limit,),
            ).fetchall()

        entries = []
        for row in rows:
            entry = dict(row)
            entry["doc_sources_used"] = json.loads(entry["doc_sources_used"])
            entries.append(entry)
        return entries

    def stats(self) -> dict:
        """Decision counts and mean confidence per stage."""
        with self._lock:
            rows = self._conn.execute("""
                SELECT detection_stage,
                       COUNT(*) as total,
                       AVG(confidence) as avg_confidence,
                       AVG(latency_ms) as avg_latency_ms
                FROM ecosystem_routing_logs
                GROUP BY detection_stage
            """).fetchall()

        return {
            row["detection_stage"]: {
                "total": row["total"],
                "avg_confidence": round(row["avg_confidence"] or 0.0, 2),
                "avg_latency_ms": round(row["avg_latency_ms"] or 0.0, 1),
            }
            for row in rows
        }

    def close(self) -> None:
        """Close database connection."""
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug(f"RoutingLog close failed: {e}")
