"""Platform usage provider: invocations and compute-hours against the plan limits."""

from __future__ import annotations

import asyncio
import calendar
import logging

import requests

from ..collaborators import Clock, PlatformUsage, utcnow
from ..config import ProviderConfig
from ..errors import RemoteFetchError

logger = logging.getLogger("linkwatch.monitoring.usage")


class PlatformUsageProvider:
    """Implements MetricsProvider against the platform's usage API."""

    def __init__(self, config: ProviderConfig, clock: Clock = utcnow) -> None:
        self._config = config
        self._clock = clock

    def _fetch(self) -> dict:
        headers = {"Authorization": f"Bearer {self._config.usage_api_token}"} if self._config.usage_api_token else {}
        try:
            resp = requests.get(self._config.usage_api_url, headers=headers, timeout=self._config.request_timeout_s)
        except requests.RequestException as exc:
            raise RemoteFetchError(f"usage API unreachable: {exc}") from exc
        if not resp.ok:
            raise RemoteFetchError(f"usage API returned HTTP {resp.status_code}")
        return resp.json()

    def compute(self, invocations: int, compute_hours: float) -> PlatformUsage:
        """Percent of limit is the larger of the two quota percentages."""
        inv_pct = invocations / self._config.invocation_limit * 100 if self._config.invocation_limit else 0.0
        cpu_pct = compute_hours / self._config.compute_hours_limit * 100 if self._config.compute_hours_limit else 0.0
        percent = max(inv_pct, cpu_pct)

        now = self._clock()
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        factor = days_in_month / now.day
        return PlatformUsage(
            invocations=invocations,
            compute_units=compute_hours,
            percent_of_limit=percent,
            projected_monthly=invocations * factor,
            projected_percent=percent * factor,
        )

    async def get_usage(self) -> PlatformUsage:
        if not self._config.usage_api_url:
            raise RemoteFetchError("usage API not configured")
        data = await asyncio.to_thread(self._fetch)
        invocations = int(data.get("invocations", 0))
        compute_hours = float(data.get("compute_hours", data.get("compute_units", 0.0)))
        usage = self.compute(invocations, compute_hours)
        logger.debug("Platform usage: %s", usage.to_dict())
        return usage
