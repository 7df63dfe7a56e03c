"""Tests for alert rule conditions and serialization."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from linkwatch.collaborators import HealthState, PlatformUsage, Severity
from linkwatch.config import MonitoringConfig
from linkwatch.monitoring import AlertRule, MonitoringSnapshot, RuleKind, default_rules

NOW = datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc)


def _snapshot(usage: float | None = 10.0, resp: float = 200.0, err: float = 0.0,
              datastore: HealthState = HealthState.HEALTHY, fallback_active: bool = False) -> MonitoringSnapshot:
    return MonitoringSnapshot(
        collected_at=NOW,
        usage=PlatformUsage(invocations=1000, percent_of_limit=usage) if usage is not None else None,
        response_time_ms=resp,
        error_rate=err,
        memory_usage=30.0,
        datastore=datastore,
        platform=HealthState.HEALTHY,
        fallback_active=fallback_active,
        service_level="full",
    )


def _rules_by_id() -> dict[str, AlertRule]:
    return {r.id: r for r in default_rules(MonitoringConfig())}


def test_default_rules_cover_every_kind():
    rules = default_rules()
    assert {r.kind for r in rules} == set(RuleKind)
    by_id = {r.id: r for r in rules}
    assert by_id["quota_usage_warning"].cooldown_s == 3600
    assert by_id["quota_usage_critical"].cooldown_s == 900
    assert by_id["datastore_unhealthy"].cooldown_s == 600
    assert by_id["quota_usage_critical"].severity is Severity.CRITICAL


def test_usage_thresholds_follow_config():
    rules = {r.id: r for r in default_rules(MonitoringConfig(usage_warning=50, usage_error=60, usage_critical=65))}
    assert rules["quota_usage_warning"].params == {"threshold": 50}
    assert rules["quota_usage_critical"].matches(_snapshot(usage=65))


@pytest.mark.parametrize(
    "usage,expected",
    [(69.9, set()), (70, {"quota_usage_warning"}), (85, {"quota_usage_warning", "quota_usage_error"}),
     (95, {"quota_usage_warning", "quota_usage_error", "quota_usage_critical"})],
)
def test_usage_rules(usage, expected):
    matched = {rid for rid, r in _rules_by_id().items() if r.matches(_snapshot(usage=usage))}
    assert matched == expected


def test_missing_usage_never_matches():
    rule = _rules_by_id()["quota_usage_warning"]
    assert rule.matches(_snapshot(usage=None)) is False


def test_response_time_and_error_rate_are_strict():
    rules = _rules_by_id()
    assert not rules["high_response_time"].matches(_snapshot(resp=5000))
    assert rules["high_response_time"].matches(_snapshot(resp=5001))
    assert not rules["high_error_rate"].matches(_snapshot(err=5))
    assert rules["high_error_rate"].matches(_snapshot(err=5.5))


def test_health_rules():
    rules = _rules_by_id()
    assert rules["datastore_unhealthy"].matches(_snapshot(datastore=HealthState.UNHEALTHY))
    assert not rules["datastore_unhealthy"].matches(_snapshot(datastore=HealthState.SLOW))
    assert rules["fallback_active"].matches(_snapshot(fallback_active=True))


def test_message_mentions_values():
    rule = _rules_by_id()["quota_usage_error"]
    assert "85.0%" in rule.message(_snapshot(usage=85))


def test_cooldown_window():
    rule = _rules_by_id()["high_error_rate"]
    assert rule.is_cooling_down(NOW) is False
    rule.last_triggered_at = NOW
    assert rule.is_cooling_down(NOW + timedelta(minutes=14)) is True
    assert rule.is_cooling_down(NOW + timedelta(minutes=15)) is False


def test_round_trip_keeps_state():
    rule = _rules_by_id()["quota_usage_warning"]
    rule.last_triggered_at = NOW
    rule.enabled = False
    restored = AlertRule.from_dict(rule.to_dict())
    assert restored == rule


def test_from_dict_rejects_unknown_kind():
    with pytest.raises(ValueError):
        AlertRule.from_dict({"id": "x", "kind": "cpu_above"})
