"""Load sampling: host metrics, request statistics and platform quota."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from typing import Callable

import psutil

from ..collaborators import Clock, MetricsProvider, NullMetricsProvider, PlatformUsage, utcnow
from .models import SystemLoadSample

logger = logging.getLogger("linkwatch.degradation.load")


class RequestStats:
    """Rolling window of request outcomes, fed by the serving layer."""

    def __init__(self, window_s: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._window_s = window_s
        self._clock = clock
        self._samples: deque[tuple[float, float, bool]] = deque()
        self._active = 0
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        cutoff = now - self._window_s
        while self._samples and self._samples[0][0] < cutoff:
            self._samples.popleft()

    def request_started(self) -> None:
        with self._lock:
            self._active += 1

    def request_finished(self, response_time_ms: float, ok: bool = True) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)
        self.record(response_time_ms, ok)

    def record(self, response_time_ms: float, ok: bool = True) -> None:
        now = self._clock()
        with self._lock:
            self._samples.append((now, response_time_ms, ok))
            self._prune(now)

    @property
    def error_rate(self) -> float:
        """Percentage of failed requests in the window."""
        with self._lock:
            self._prune(self._clock())
            if not self._samples:
                return 0.0
            failed = sum(1 for _, _, ok in self._samples if not ok)
            return failed / len(self._samples) * 100

    @property
    def mean_response_time_ms(self) -> float:
        with self._lock:
            self._prune(self._clock())
            if not self._samples:
                return 0.0
            return sum(ms for _, ms, _ in self._samples) / len(self._samples)

    @property
    def active_connections(self) -> int:
        return self._active


class HostMetrics:
    def __init__(self, memory_limit_mb: float = 0.0) -> None:
        self._memory_limit_mb = memory_limit_mb
        self._process = psutil.Process(os.getpid())

    def cpu_percent(self) -> float:
        return psutil.cpu_percent(interval=None)

    def memory_percent(self) -> float:
        if self._memory_limit_mb > 0:
            rss_mb = self._process.memory_info().rss / (1024 * 1024)
            return min(100.0, rss_mb / self._memory_limit_mb * 100)
        return psutil.virtual_memory().percent


class LoadAssessor:
    """Builds a SystemLoadSample from its collaborators. Holds no state of its own."""

    def __init__(
        self,
        metrics: MetricsProvider | None = None,
        request_stats: RequestStats | None = None,
        host: HostMetrics | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._metrics = metrics or NullMetricsProvider()
        self.request_stats = request_stats or RequestStats()
        self._host = host or HostMetrics()
        self._clock = clock

    async def usage(self) -> PlatformUsage | None:
        """Platform usage, or None when the provider fails."""
        try:
            return await self._metrics.get_usage()
        except Exception as exc:
            logger.warning("Usage lookup failed, treating quota as unknown: %s", exc)
            return None

    def memory_percent(self) -> float:
        return self._host.memory_percent()

    async def assess(self) -> SystemLoadSample:
        usage = await self.usage()
        sample = SystemLoadSample(
            cpu_usage=self._host.cpu_percent(),
            memory_usage=self._host.memory_percent(),
            quota_usage=usage.percent_of_limit if usage else 0.0,
            error_rate=self.request_stats.error_rate,
            response_time_ms=self.request_stats.mean_response_time_ms,
            active_connections=self.request_stats.active_connections,
            sampled_at=self._clock(),
        )
        logger.debug("Load sample: %s", sample.to_dict())
        return sample
