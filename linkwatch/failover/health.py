"""HTTP probes of the primary platform: API, datastore, scheduler and snapshot source."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

import requests

from ..collaborators import HealthState
from ..config import ProviderConfig
from ..errors import RemoteFetchError

logger = logging.getLogger("linkwatch.failover.health")

DATASTORE_HEALTHY_MS = 1000
DATASTORE_SLOW_MS = 5000


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class RestHealthProvider:
    """Implements HealthProvider and SnapshotSource over plain HTTP GETs."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    def _bearer(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _datastore_headers(self) -> dict[str, str]:
        key = self._config.datastore_key
        return {"apikey": key, "Authorization": f"Bearer {key}"} if key else {}

    def _get_json(self, url: str, headers: dict[str, str]) -> Any:
        try:
            resp = requests.get(url, headers=headers, timeout=self._config.request_timeout_s)
        except requests.RequestException as exc:
            raise RemoteFetchError(f"GET {url} failed: {exc}") from exc
        if not resp.ok:
            raise RemoteFetchError(f"GET {url} returned HTTP {resp.status_code}")
        return resp.json()

    # --- HealthProvider ---

    def _api_health(self) -> HealthState:
        try:
            resp = requests.get(
                self._config.platform_api_url,
                headers=self._bearer(self._config.platform_api_token),
                timeout=self._config.request_timeout_s,
            )
        except requests.RequestException as exc:
            logger.warning("Platform API probe failed: %s", exc)
            return HealthState.UNKNOWN
        return HealthState.HEALTHY if resp.ok else HealthState.UNHEALTHY

    async def get_api_health(self) -> HealthState:
        if not self._config.platform_api_url:
            return HealthState.UNKNOWN
        return await asyncio.to_thread(self._api_health)

    def _datastore_health(self) -> HealthState:
        t0 = time.monotonic()
        try:
            resp = requests.get(
                self._config.datastore_url,
                headers=self._datastore_headers(),
                timeout=self._config.request_timeout_s,
            )
        except requests.RequestException as exc:
            logger.warning("Datastore probe failed: %s", exc)
            return HealthState.UNHEALTHY
        elapsed_ms = (time.monotonic() - t0) * 1000
        if not resp.ok:
            return HealthState.UNHEALTHY
        if elapsed_ms < DATASTORE_HEALTHY_MS:
            return HealthState.HEALTHY
        if elapsed_ms < DATASTORE_SLOW_MS:
            return HealthState.SLOW
        return HealthState.UNHEALTHY

    async def get_datastore_health(self) -> HealthState:
        if not self._config.datastore_url:
            return HealthState.UNKNOWN
        return await asyncio.to_thread(self._datastore_health)

    def _last_run(self) -> datetime | None:
        rows = self._get_json(self._config.scheduler_runs_url, self._datastore_headers())
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return None
        stamp = rows[0].get("created_at") or rows[0].get("completed_at")
        return _parse_ts(stamp) if stamp else None

    async def get_last_scheduled_run_time(self) -> datetime | None:
        if not self._config.scheduler_runs_url:
            return None
        return await asyncio.to_thread(self._last_run)

    # --- SnapshotSource ---

    def _snapshot(self) -> dict[str, Any] | None:
        data = self._get_json(self._config.snapshot_url, self._datastore_headers())
        if isinstance(data, list):
            return data[0] if data else None
        return data or None

    async def latest_snapshot(self) -> dict[str, Any] | None:
        if not self._config.snapshot_url:
            return None
        return await asyncio.to_thread(self._snapshot)
