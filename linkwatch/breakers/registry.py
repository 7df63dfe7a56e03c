"""Named circuit breakers guarding fallible async operations."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from ..collaborators import Clock, utcnow
from ..config import BreakerConfig
from ..errors import BreakerOpenError, OperationTimeoutError

logger = logging.getLogger("linkwatch.breakers")

T = TypeVar("T")

# name -> (failure threshold, reset timeout seconds)
CRITICAL_SERVICES: dict[str, tuple[int, float]] = {
    "database": (3, 30.0),
    "platform_api": (5, 60.0),
    "link_validation": (10, 120.0),
    "email_service": (3, 300.0),
}


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    name: str
    threshold: int
    timeout_s: float
    state: BreakerState = BreakerState.CLOSED
    failure_count: int = 0
    last_failure_at: datetime | None = None
    last_success_at: datetime | None = None
    next_retry_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "threshold": self.threshold,
            "timeout_s": self.timeout_s,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
        }


class CircuitBreakerRegistry:
    """Thread-safe registry of breakers, created lazily by name.

    The lock is only held for bookkeeping, never across an await.
    """

    def __init__(
        self,
        config: BreakerConfig | None = None,
        clock: Clock = utcnow,
        preload: dict[str, tuple[int, float]] | None = None,
    ) -> None:
        self._config = config or BreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        for name, (threshold, timeout_s) in (CRITICAL_SERVICES if preload is None else preload).items():
            self._breakers[name] = CircuitBreaker(name=name, threshold=threshold, timeout_s=timeout_s)

    # --- Bookkeeping (lock held) ---

    def _get_or_create(self, name: str, threshold: int | None, reset_timeout_s: float | None) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                name=name,
                threshold=threshold or self._config.threshold,
                timeout_s=reset_timeout_s or self._config.reset_timeout_s,
            )
            self._breakers[name] = breaker
        return breaker

    def _before_call(self, name: str, threshold: int | None, reset_timeout_s: float | None) -> None:
        with self._lock:
            breaker = self._get_or_create(name, threshold, reset_timeout_s)
            if breaker.state is not BreakerState.OPEN:
                return
            now = self._clock()
            if breaker.next_retry_at is not None and now < breaker.next_retry_at:
                raise BreakerOpenError(name, breaker.next_retry_at)
            breaker.state = BreakerState.HALF_OPEN
        logger.info("Breaker %s half-open, allowing trial call", name)

    def _record_success(self, name: str) -> None:
        with self._lock:
            breaker = self._breakers[name]
            recovered = breaker.state is BreakerState.HALF_OPEN
            breaker.failure_count = 0
            breaker.last_success_at = self._clock()
            breaker.next_retry_at = None
            breaker.state = BreakerState.CLOSED
        if recovered:
            logger.info("Breaker %s closed after successful trial call", name)

    def _record_failure(self, name: str) -> None:
        with self._lock:
            breaker = self._breakers[name]
            now = self._clock()
            breaker.failure_count += 1
            breaker.last_failure_at = now
            trips = breaker.state is BreakerState.HALF_OPEN or breaker.failure_count >= breaker.threshold
            if trips:
                breaker.state = BreakerState.OPEN
                breaker.next_retry_at = now + timedelta(seconds=breaker.timeout_s)
            count, retry_at = breaker.failure_count, breaker.next_retry_at
        if trips:
            logger.warning("Breaker %s opened after %d failures, retry at %s", name, count, retry_at.isoformat())

    # --- Public API ---

    async def execute(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout_s: float | None = None,
        threshold: int | None = None,
        reset_timeout_s: float | None = None,
    ) -> T:
        """Run ``operation`` under the named breaker.

        Raises BreakerOpenError without invoking the operation while the
        breaker is open, OperationTimeoutError when the call exceeds its
        timeout, and re-raises any other failure after counting it.
        """
        self._before_call(name, threshold, reset_timeout_s)
        limit = timeout_s if timeout_s is not None else self._config.call_timeout_s
        try:
            result = await asyncio.wait_for(operation(), timeout=limit)
        except asyncio.TimeoutError:
            self._record_failure(name)
            raise OperationTimeoutError(name, limit) from None
        except Exception:
            self._record_failure(name)
            raise
        self._record_success(name)
        return result

    def get_state(self, name: str) -> CircuitBreaker | None:
        with self._lock:
            breaker = self._breakers.get(name)
            return dataclasses.replace(breaker) if breaker else None

    def get_all(self) -> dict[str, CircuitBreaker]:
        with self._lock:
            return {name: dataclasses.replace(b) for name, b in self._breakers.items()}

    def reset(self, name: str) -> bool:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                return False
            breaker.state = BreakerState.CLOSED
            breaker.failure_count = 0
            breaker.next_retry_at = None
        logger.info("Breaker %s reset", name)
        return True

    def half_open_all(self) -> list[str]:
        """Move every open breaker to half-open; returns the names moved."""
        moved: list[str] = []
        with self._lock:
            now = self._clock()
            for breaker in self._breakers.values():
                if breaker.state is BreakerState.OPEN:
                    breaker.state = BreakerState.HALF_OPEN
                    breaker.next_retry_at = now
                    moved.append(breaker.name)
        if moved:
            logger.info("Breakers moved to half-open: %s", ", ".join(moved))
        return moved
