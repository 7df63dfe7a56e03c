"""Continuous monitoring: snapshots, alert rules and scheduled reports."""

from .engine import AlertEngine
from .models import MonitoringSnapshot
from .reports import Report, ReportKind, ReportScheduler, build_recommendations, build_report, period_key, usage_trend
from .rules import CONDITIONS, AlertRule, RuleKind, default_rules
from .usage import PlatformUsageProvider

__all__ = [
    "AlertEngine",
    "MonitoringSnapshot",
    "Report",
    "ReportKind",
    "ReportScheduler",
    "build_recommendations",
    "build_report",
    "period_key",
    "usage_trend",
    "CONDITIONS",
    "AlertRule",
    "RuleKind",
    "default_rules",
    "PlatformUsageProvider",
]
