"""Tests for PlatformUsageProvider."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from linkwatch.config import ProviderConfig
from linkwatch.errors import RemoteFetchError
from linkwatch.monitoring import PlatformUsageProvider

CONFIG = ProviderConfig(
    usage_api_url="https://platform.example/api/usage",
    usage_api_token="usage-token",
    invocation_limit=1_000_000,
    compute_hours_limit=1000,
)


def _resp(payload, ok: bool = True, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.ok = ok
    resp.status_code = status
    resp.json.return_value = payload
    return resp


def test_compute_takes_larger_quota_and_projects_month(clock):
    # 12 October: 31-day month, factor 31 / 12
    usage = PlatformUsageProvider(CONFIG, clock=clock).compute(120_000, 300.0)
    assert usage.percent_of_limit == pytest.approx(30.0)
    assert usage.projected_percent == pytest.approx(77.5)
    assert usage.projected_monthly == pytest.approx(310_000)
    assert usage.compute_units == 300.0


def test_compute_with_zero_limits(clock):
    provider = PlatformUsageProvider(ProviderConfig(invocation_limit=0, compute_hours_limit=0), clock=clock)
    assert provider.compute(5000, 10).percent_of_limit == 0.0


@pytest.mark.asyncio
async def test_get_usage_reads_api(clock):
    provider = PlatformUsageProvider(CONFIG, clock=clock)
    with patch("linkwatch.monitoring.usage.requests.get", return_value=_resp({"invocations": 500_000})) as get:
        usage = await provider.get_usage()
    assert usage.invocations == 500_000
    assert usage.percent_of_limit == pytest.approx(50.0)
    _, kwargs = get.call_args
    assert kwargs["headers"] == {"Authorization": "Bearer usage-token"}


@pytest.mark.asyncio
async def test_compute_units_key_accepted(clock):
    provider = PlatformUsageProvider(CONFIG, clock=clock)
    with patch("linkwatch.monitoring.usage.requests.get", return_value=_resp({"compute_units": 900})):
        usage = await provider.get_usage()
    assert usage.percent_of_limit == pytest.approx(90.0)


@pytest.mark.asyncio
async def test_unconfigured_provider_raises(clock):
    with pytest.raises(RemoteFetchError):
        await PlatformUsageProvider(ProviderConfig(), clock=clock).get_usage()


@pytest.mark.asyncio
async def test_http_errors_raise(clock):
    provider = PlatformUsageProvider(CONFIG, clock=clock)
    with patch("linkwatch.monitoring.usage.requests.get", return_value=_resp({}, ok=False, status=503)):
        with pytest.raises(RemoteFetchError, match="503"):
            await provider.get_usage()
    with patch("linkwatch.monitoring.usage.requests.get", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(RemoteFetchError):
            await provider.get_usage()
