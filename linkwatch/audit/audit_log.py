"""Append-only audit log of level changes and fallback activity, stored in SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("linkwatch.audit")


class SqliteAuditLog:
    def __init__(self, db_path: str = "data/linkwatch-audit.db") -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """CREATE TABLE IF NOT EXISTS audit_events (
                id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                ts_utc TEXT NOT NULL
            )"""
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_type_ts ON audit_events (event_type, ts_utc)")
        self._conn.commit()

    def append(self, event: dict[str, Any]) -> None:
        event_type = str(event.get("event", "unknown"))
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._conn.execute(
                "INSERT INTO audit_events (id, event_type, payload_json, ts_utc) VALUES (?,?,?,?)",
                (str(uuid.uuid4()), event_type, json.dumps(event, default=str), now),
            )
            self._conn.commit()
        logger.debug("Audit event %s recorded", event_type)

    def recent(self, event_type: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Newest first."""
        query = "SELECT event_type, payload_json, ts_utc FROM audit_events"
        params: tuple[Any, ...] = ()
        if event_type:
            query += " WHERE event_type=?"
            params = (event_type,)
        query += " ORDER BY ts_utc DESC LIMIT ?"
        with self._lock:
            rows = self._conn.execute(query, params + (limit,)).fetchall()
        return [{**json.loads(payload), "event": etype, "recorded_at": ts} for etype, payload, ts in rows]

    def close(self) -> None:
        self._conn.close()
