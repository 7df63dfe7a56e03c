"""Snapshot store: writes the state the remote fallback runner reads."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..collaborators import Clock, utcnow
from ..config import SyncConfig
from ..errors import SyncError
from .handoff_bucket import LATEST, HandoffBucket

logger = logging.getLogger("linkwatch.sync")


@dataclass
class SyncResult:
    s3_key: str | None
    local_path: str | None
    size_bytes: int
    duration_ms: float


class SnapshotStore:
    """Dual-write to S3 and a local directory. Raises SyncError only if every target fails."""

    S3_RETRY_DELAYS = [1, 2, 4]  # seconds

    def __init__(
        self, config: SyncConfig | None = None, bucket: HandoffBucket | None = None, clock: Clock = utcnow,
    ) -> None:
        self._config = config or SyncConfig()
        if bucket is None and self._config.s3_enabled:
            bucket = HandoffBucket(self._config)
        self._bucket = bucket
        self._clock = clock

    @staticmethod
    def _atomic_write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            os.write(fd, data)
            os.fsync(fd)
            os.close(fd)
            fd = -1
            os.replace(tmp, path)
        except BaseException:
            if fd >= 0:
                os.close(fd)
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    async def _publish_with_retry(self, body: bytes, exported_at: str) -> str | None:
        """The S3 key written, or None once every attempt failed."""
        last_exc: Exception | None = None
        for attempt, delay in enumerate(self.S3_RETRY_DELAYS):
            try:
                return await self._bucket.put_latest(body, exported_at)
            except Exception as exc:
                last_exc = exc
                logger.warning("S3 upload attempt %d failed: %s", attempt + 1, exc)
                if attempt < len(self.S3_RETRY_DELAYS) - 1:
                    await asyncio.sleep(delay)
        logger.error("S3 upload failed after %d attempts: %s", len(self.S3_RETRY_DELAYS), last_exc)
        return None

    async def export(self, snapshot: dict[str, Any]) -> SyncResult:
        t0 = time.monotonic()
        exported_at = self._clock().isoformat()
        payload = {"exported_at": exported_at, "snapshot": snapshot}
        body = json.dumps(payload, default=str, ensure_ascii=False).encode()

        s3_key: str | None = None
        if self._bucket is not None:
            s3_key = await self._publish_with_retry(body, exported_at)

        local_path: str | None = None
        if self._config.local_path:
            path = Path(self._config.local_path) / LATEST
            try:
                await asyncio.to_thread(self._atomic_write, path, body)
                local_path = str(path)
            except OSError as exc:
                logger.error("Local snapshot write to %s failed: %s", path, exc)

        if s3_key is None and local_path is None:
            raise SyncError("snapshot could not be written to any target")

        result = SyncResult(
            s3_key=s3_key,
            local_path=local_path,
            size_bytes=len(body),
            duration_ms=(time.monotonic() - t0) * 1000,
        )
        logger.info("Snapshot exported (%d bytes, s3=%s, local=%s)", result.size_bytes, s3_key, local_path)
        return result

    async def read_latest(self) -> dict[str, Any] | None:
        """The last exported payload from the local copy, or S3 when there is none."""
        path = Path(self._config.local_path) / LATEST
        if self._config.local_path and path.exists():
            return json.loads(await asyncio.to_thread(path.read_bytes))
        if self._bucket is not None:
            try:
                return await self._bucket.get_latest()
            except Exception as exc:
                logger.warning("Reading snapshot from S3 failed: %s", exc)
        return None
