"""Tests for CircuitBreakerRegistry."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from linkwatch.breakers.registry import CRITICAL_SERVICES, BreakerState, CircuitBreakerRegistry
from linkwatch.config import BreakerConfig
from linkwatch.errors import BreakerOpenError, OperationTimeoutError

CONFIG = BreakerConfig(threshold=3, reset_timeout_s=60.0, call_timeout_s=1.0)


@pytest.fixture
def registry(clock):
    return CircuitBreakerRegistry(CONFIG, clock=clock, preload={})


async def _fail() -> None:
    raise ConnectionError("boom")


async def _trip(registry: CircuitBreakerRegistry, name: str = "svc", times: int = 3) -> None:
    for _ in range(times):
        with pytest.raises(ConnectionError):
            await registry.execute(name, _fail)


def test_critical_services_preloaded(clock):
    registry = CircuitBreakerRegistry(CONFIG, clock=clock)
    breakers = registry.get_all()
    assert set(breakers) == set(CRITICAL_SERVICES)
    assert breakers["database"].threshold == 3
    assert breakers["database"].timeout_s == 30.0
    assert breakers["link_validation"].threshold == 10


@pytest.mark.asyncio
async def test_success_returns_result_and_creates_breaker(registry):
    result = await registry.execute("svc", AsyncMock(return_value=42))
    assert result == 42
    state = registry.get_state("svc")
    assert state.state is BreakerState.CLOSED
    assert state.threshold == 3


@pytest.mark.asyncio
async def test_opens_after_threshold_failures(registry):
    await _trip(registry)
    assert registry.get_state("svc").state is BreakerState.OPEN


@pytest.mark.asyncio
async def test_open_breaker_rejects_without_invoking(registry, clock):
    await _trip(registry)
    op = AsyncMock(return_value="ok")
    with pytest.raises(BreakerOpenError) as exc_info:
        await registry.execute("svc", op)
    op.assert_not_called()
    assert exc_info.value.retry_at == clock.now + timedelta(seconds=60)


@pytest.mark.asyncio
async def test_below_threshold_stays_closed_and_success_resets(registry):
    await _trip(registry, times=2)
    assert registry.get_state("svc").failure_count == 2
    await registry.execute("svc", AsyncMock(return_value=None))
    state = registry.get_state("svc")
    assert state.state is BreakerState.CLOSED
    assert state.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_success_closes(registry, clock):
    await _trip(registry)
    clock.advance(61)
    await registry.execute("svc", AsyncMock(return_value="ok"))
    state = registry.get_state("svc")
    assert state.state is BreakerState.CLOSED
    assert state.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens_with_fresh_retry(registry, clock):
    await _trip(registry)
    first_retry = registry.get_state("svc").next_retry_at
    clock.advance(61)
    with pytest.raises(ConnectionError):
        await registry.execute("svc", _fail)
    state = registry.get_state("svc")
    assert state.state is BreakerState.OPEN
    assert state.next_retry_at > first_retry


@pytest.mark.asyncio
async def test_timeout_counts_as_failure(registry):
    async def slow() -> None:
        await asyncio.sleep(1)

    with pytest.raises(OperationTimeoutError):
        await registry.execute("slow", slow, timeout_s=0.01, threshold=1)
    assert registry.get_state("slow").state is BreakerState.OPEN


@pytest.mark.asyncio
async def test_caller_supplied_threshold_for_new_breaker(registry):
    with pytest.raises(ConnectionError):
        await registry.execute("custom", _fail, threshold=1, reset_timeout_s=5)
    state = registry.get_state("custom")
    assert state.state is BreakerState.OPEN
    assert state.timeout_s == 5


@pytest.mark.asyncio
async def test_reset_closes_breaker(registry):
    await _trip(registry)
    assert registry.reset("svc") is True
    assert registry.get_state("svc").state is BreakerState.CLOSED
    assert registry.reset("missing") is False


@pytest.mark.asyncio
async def test_half_open_all_moves_open_breakers(registry):
    await _trip(registry, name="a")
    await registry.execute("b", AsyncMock(return_value=None))
    moved = registry.half_open_all()
    assert moved == ["a"]
    assert registry.get_state("a").state is BreakerState.HALF_OPEN
    assert registry.get_state("b").state is BreakerState.CLOSED


@pytest.mark.asyncio
async def test_get_state_returns_copy(registry):
    await registry.execute("svc", AsyncMock(return_value=None))
    copy = registry.get_state("svc")
    copy.failure_count = 99
    assert registry.get_state("svc").failure_count == 0
