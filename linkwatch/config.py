"""
linkwatch configuration
Loads from environment variables (``.env`` honoured) with sensible defaults,
optionally overlaid by a YAML file.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

ENV_PREFIX = "LINKWATCH_"

FAILOVER_POLICIES = ("any_signal", "corroborated")


def _env(name: str, default: str = "") -> str:
    return os.environ.get(ENV_PREFIX + name, default)


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_thresholds(level: str, default: LevelThresholds) -> LevelThresholds:
    """Per-level bounds from e.g. LINKWATCH_ESSENTIAL_CPU, falling back to ``default`` per field."""
    return LevelThresholds(**{
        f.name: _env_float(f"{level}_{f.name.upper()}", getattr(default, f.name))
        for f in dataclasses.fields(LevelThresholds)
    })


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LevelThresholds:
    """Upper bounds a sample must stay within for a service level."""

    cpu: float
    memory: float
    quota: float
    error_rate: float
    response_time_ms: float


@dataclass(frozen=True)
class DegradationConfig:
    check_interval_s: float = 30.0
    stability_period_s: float = 120.0
    notification_cooldown_s: float = 300.0
    history_size: int = 100
    request_window_s: float = 300.0
    memory_limit_mb: float = 0.0  # 0 = host memory percent
    full: LevelThresholds = LevelThresholds(70, 70, 60, 2, 5000)
    essential: LevelThresholds = LevelThresholds(85, 85, 75, 5, 10000)
    minimal: LevelThresholds = LevelThresholds(95, 95, 90, 10, 15000)

    @classmethod
    def from_env(cls) -> DegradationConfig:
        return cls(
            check_interval_s=_env_float("DEGRADATION_CHECK_INTERVAL_S", cls.check_interval_s),
            stability_period_s=_env_float("STABILITY_PERIOD_S", cls.stability_period_s),
            notification_cooldown_s=_env_float("LEVEL_NOTIFICATION_COOLDOWN_S", cls.notification_cooldown_s),
            history_size=_env_int("DEGRADATION_HISTORY_SIZE", cls.history_size),
            request_window_s=_env_float("REQUEST_WINDOW_S", cls.request_window_s),
            memory_limit_mb=_env_float("MEMORY_LIMIT_MB", cls.memory_limit_mb),
            full=_env_thresholds("FULL", cls.full),
            essential=_env_thresholds("ESSENTIAL", cls.essential),
            minimal=_env_thresholds("MINIMAL", cls.minimal),
        )


@dataclass(frozen=True)
class BreakerConfig:
    threshold: int = 5
    reset_timeout_s: float = 60.0
    call_timeout_s: float = 10.0

    @classmethod
    def from_env(cls) -> BreakerConfig:
        return cls(
            threshold=_env_int("BREAKER_THRESHOLD", cls.threshold),
            reset_timeout_s=_env_float("BREAKER_RESET_TIMEOUT_S", cls.reset_timeout_s),
            call_timeout_s=_env_float("BREAKER_CALL_TIMEOUT_S", cls.call_timeout_s),
        )


@dataclass(frozen=True)
class FailoverConfig:
    check_interval_s: float = 300.0
    max_audit_delay_h: float = 8.0
    healthy_audit_delay_h: float = 2.0
    health_check_timeout_s: float = 30.0
    policy: str = "any_signal"
    sync_interval_s: float = 3600.0

    @classmethod
    def from_env(cls) -> FailoverConfig:
        return cls(
            check_interval_s=_env_float("FAILOVER_CHECK_INTERVAL_S", cls.check_interval_s),
            max_audit_delay_h=_env_float("MAX_AUDIT_DELAY_H", cls.max_audit_delay_h),
            healthy_audit_delay_h=_env_float("HEALTHY_AUDIT_DELAY_H", cls.healthy_audit_delay_h),
            health_check_timeout_s=_env_float("HEALTH_CHECK_TIMEOUT_S", cls.health_check_timeout_s),
            policy=_env("FAILOVER_POLICY", cls.policy),
            sync_interval_s=_env_float("SYNC_INTERVAL_S", cls.sync_interval_s),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Where the fallback hand-off snapshot is written."""

    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_endpoint_url: str = ""
    prefix: str = "fallback-sync"
    local_path: str = "data/fallback-sync"

    @property
    def s3_enabled(self) -> bool:
        return bool(self.s3_bucket)

    @classmethod
    def from_env(cls) -> SyncConfig:
        return cls(
            s3_bucket=_env("SYNC_S3_BUCKET"),
            s3_region=_env("SYNC_S3_REGION", cls.s3_region),
            s3_access_key=_env("SYNC_S3_ACCESS_KEY"),
            s3_secret_key=_env("SYNC_S3_SECRET_KEY"),
            s3_endpoint_url=_env("SYNC_S3_ENDPOINT_URL"),
            prefix=_env("SYNC_PREFIX", cls.prefix),
            local_path=_env("SYNC_LOCAL_PATH", cls.local_path),
        )


@dataclass(frozen=True)
class RemoteConfig:
    token: str = ""
    owner: str = ""
    repo: str = ""
    base_url: str = "https://api.github.com"
    default_ref: str = "main"
    request_timeout_s: float = 30.0
    run_lookup_delay_s: float = 2.0
    user_agent: str = "linkwatch-fallback/1.0"
    flow_prefix: str = "fallback-"
    monitor_max_wait_s: float = 600.0
    monitor_interval_s: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.token and self.owner and self.repo)

    @classmethod
    def from_env(cls) -> RemoteConfig:
        owner, _, repo = os.environ.get("GITHUB_REPOSITORY", "").partition("/")
        return cls(
            token=os.environ.get("GITHUB_TOKEN", ""),
            owner=owner,
            repo=repo,
            base_url=_env("REMOTE_API_URL", cls.base_url),
            default_ref=_env("REMOTE_REF", cls.default_ref),
            request_timeout_s=_env_float("REMOTE_TIMEOUT_S", cls.request_timeout_s),
            run_lookup_delay_s=_env_float("REMOTE_RUN_LOOKUP_DELAY_S", cls.run_lookup_delay_s),
            monitor_max_wait_s=_env_float("REMOTE_MONITOR_MAX_WAIT_S", cls.monitor_max_wait_s),
            monitor_interval_s=_env_float("REMOTE_MONITOR_INTERVAL_S", cls.monitor_interval_s),
        )


@dataclass(frozen=True)
class MonitoringConfig:
    check_interval_s: float = 300.0
    usage_warning: float = 70.0
    usage_error: float = 80.0
    usage_critical: float = 90.0
    alerting_enabled: bool = True
    daily_report: bool = True
    weekly_report: bool = True
    monthly_report: bool = True
    daily_report_hour: int = 9
    weekly_report_hour: int = 10
    monthly_report_hour: int = 11
    history_size: int = 1000
    workflow_failure_rate: float = 0.5
    workflow_sample_size: int = 5
    adhoc_alert_cooldown_s: float = 1800.0

    @classmethod
    def from_env(cls) -> MonitoringConfig:
        return cls(
            check_interval_s=_env_float("MONITOR_INTERVAL_S", cls.check_interval_s),
            usage_warning=_env_float("USAGE_WARNING", cls.usage_warning),
            usage_error=_env_float("USAGE_ERROR", cls.usage_error),
            usage_critical=_env_float("USAGE_CRITICAL", cls.usage_critical),
            alerting_enabled=_env_bool("ALERTING_ENABLED", cls.alerting_enabled),
            daily_report=_env_bool("DAILY_REPORT", cls.daily_report),
            weekly_report=_env_bool("WEEKLY_REPORT", cls.weekly_report),
            monthly_report=_env_bool("MONTHLY_REPORT", cls.monthly_report),
            daily_report_hour=_env_int("DAILY_REPORT_HOUR", cls.daily_report_hour),
            weekly_report_hour=_env_int("WEEKLY_REPORT_HOUR", cls.weekly_report_hour),
            monthly_report_hour=_env_int("MONTHLY_REPORT_HOUR", cls.monthly_report_hour),
            history_size=_env_int("MONITOR_HISTORY_SIZE", cls.history_size),
            workflow_failure_rate=_env_float("WORKFLOW_FAILURE_RATE", cls.workflow_failure_rate),
            workflow_sample_size=_env_int("WORKFLOW_SAMPLE_SIZE", cls.workflow_sample_size),
            adhoc_alert_cooldown_s=_env_float("ALERT_COOLDOWN_S", cls.adhoc_alert_cooldown_s),
        )


@dataclass(frozen=True)
class NotifyConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_admin_chat_id: str = ""
    webhook_url: str = ""
    webhook_token: str = ""
    source: str = "linkwatch"
    rate_limit_s: float = 600.0
    batch_window_s: float = 1800.0
    request_timeout_s: float = 10.0

    @classmethod
    def from_env(cls) -> NotifyConfig:
        return cls(
            telegram_bot_token=_env("TELEGRAM_BOT_TOKEN"),
            telegram_chat_id=_env("TELEGRAM_CHAT_ID"),
            telegram_admin_chat_id=_env("TELEGRAM_ADMIN_CHAT_ID"),
            webhook_url=_env("ALERT_WEBHOOK_URL"),
            webhook_token=_env("ALERT_WEBHOOK_TOKEN"),
            source=_env("ALERT_SOURCE", cls.source),
            rate_limit_s=_env_float("ALERT_RATE_LIMIT_S", cls.rate_limit_s),
            batch_window_s=_env_float("ALERT_BATCH_WINDOW_S", cls.batch_window_s),
        )


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoints of the primary platform probed for usage and health."""

    usage_api_url: str = ""
    usage_api_token: str = ""
    invocation_limit: int = 1_000_000
    compute_hours_limit: float = 1000.0
    platform_api_url: str = ""
    platform_api_token: str = ""
    datastore_url: str = ""
    datastore_key: str = ""
    scheduler_runs_url: str = ""
    snapshot_url: str = ""
    request_timeout_s: float = 10.0

    @classmethod
    def from_env(cls) -> ProviderConfig:
        return cls(
            usage_api_url=_env("USAGE_API_URL"),
            usage_api_token=_env("USAGE_API_TOKEN"),
            invocation_limit=_env_int("INVOCATION_LIMIT", cls.invocation_limit),
            compute_hours_limit=_env_float("COMPUTE_HOURS_LIMIT", cls.compute_hours_limit),
            platform_api_url=_env("PLATFORM_API_URL"),
            platform_api_token=_env("PLATFORM_API_TOKEN"),
            datastore_url=_env("DATASTORE_URL"),
            datastore_key=_env("DATASTORE_KEY"),
            scheduler_runs_url=_env("SCHEDULER_RUNS_URL"),
            snapshot_url=_env("SNAPSHOT_URL"),
            request_timeout_s=_env_float("PROVIDER_TIMEOUT_S", cls.request_timeout_s),
        )


@dataclass(frozen=True)
class StatusConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8087
    token: str = ""

    @classmethod
    def from_env(cls) -> StatusConfig:
        return cls(
            enabled=_env_bool("STATUS_ENABLED", cls.enabled),
            host=_env("STATUS_HOST", cls.host),
            port=_env_int("STATUS_PORT", cls.port),
            token=_env("STATUS_TOKEN"),
        )


@dataclass(frozen=True)
class LoggingConfig:
    log_dir: str = "logs"
    level: str = "INFO"
    retention_days: int = 7

    @classmethod
    def from_env(cls) -> LoggingConfig:
        return cls(
            log_dir=_env("LOG_DIR", cls.log_dir),
            level=_env("LOG_LEVEL", cls.level),
            retention_days=_env_int("LOG_RETENTION_DAYS", cls.retention_days),
        )


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ControlPlaneConfig:
    """Immutable configuration for the whole control plane."""

    degradation: DegradationConfig = field(default_factory=DegradationConfig)
    breakers: BreakerConfig = field(default_factory=BreakerConfig)
    failover: FailoverConfig = field(default_factory=FailoverConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    audit_db_path: str = "data/linkwatch-audit.db"

    @classmethod
    def from_env(cls) -> ControlPlaneConfig:
        return cls(
            degradation=DegradationConfig.from_env(),
            breakers=BreakerConfig.from_env(),
            failover=FailoverConfig.from_env(),
            sync=SyncConfig.from_env(),
            remote=RemoteConfig.from_env(),
            monitoring=MonitoringConfig.from_env(),
            notify=NotifyConfig.from_env(),
            providers=ProviderConfig.from_env(),
            status=StatusConfig.from_env(),
            logging=LoggingConfig.from_env(),
            audit_db_path=_env("AUDIT_DB", "data/linkwatch-audit.db"),
        )

    @classmethod
    def from_yaml(cls, path: str) -> ControlPlaneConfig:
        """Environment values overlaid by the sections of a YAML file."""
        with open(path, "r") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError(f"{path}: top level must be a mapping")

        base = cls.from_env()
        overrides: dict[str, Any] = {}
        for name, section in raw.items():
            if name == "audit_db_path":
                overrides[name] = str(section)
                continue
            if not isinstance(section, dict):
                raise ConfigurationError(f"{path}: section '{name}' must be a mapping")
            if name == "degradation":
                section = {
                    key: LevelThresholds(**value) if key in ("full", "essential", "minimal") else value
                    for key, value in section.items()
                }
            overrides[name] = section
        return base.with_overrides(**overrides)

    @classmethod
    def load(cls, path: str | None = None) -> ControlPlaneConfig:
        path = path or _env("CONFIG")
        if path and Path(path).exists():
            return cls.from_yaml(path)
        return cls.from_env()

    def with_overrides(self, **sections: Any) -> ControlPlaneConfig:
        """Copy with named sections replaced.

        Each value is either a section instance or a mapping of field
        overrides for that section, e.g.
        ``cfg.with_overrides(degradation={"stability_period_s": 10})``.
        """
        changes: dict[str, Any] = {}
        for name, value in sections.items():
            if name not in {f.name for f in dataclasses.fields(self)}:
                raise ConfigurationError(f"unknown config section: {name}")
            if isinstance(value, dict):
                try:
                    value = dataclasses.replace(getattr(self, name), **value)
                except TypeError as exc:
                    raise ConfigurationError(f"invalid override for '{name}': {exc}") from exc
            changes[name] = value
        return dataclasses.replace(self, **changes)

    def validate(self) -> ControlPlaneConfig:
        """Raise ConfigurationError on inconsistent values; returns self."""
        problems: list[str] = []
        deg = self.degradation
        for metric in ("cpu", "memory", "quota", "error_rate", "response_time_ms"):
            full, essential, minimal = (getattr(t, metric) for t in (deg.full, deg.essential, deg.minimal))
            if not full <= essential <= minimal:
                problems.append(f"degradation thresholds for {metric} must not decrease: {full}, {essential}, {minimal}")
        for label, value in (
            ("degradation.check_interval_s", deg.check_interval_s),
            ("degradation.history_size", deg.history_size),
            ("breakers.reset_timeout_s", self.breakers.reset_timeout_s),
            ("breakers.call_timeout_s", self.breakers.call_timeout_s),
            ("failover.check_interval_s", self.failover.check_interval_s),
            ("failover.health_check_timeout_s", self.failover.health_check_timeout_s),
            ("remote.request_timeout_s", self.remote.request_timeout_s),
            ("monitoring.check_interval_s", self.monitoring.check_interval_s),
            ("monitoring.history_size", self.monitoring.history_size),
        ):
            if value <= 0:
                problems.append(f"{label} must be positive, got {value}")
        if deg.stability_period_s < 0:
            problems.append("degradation.stability_period_s must not be negative")
        if self.breakers.threshold < 1:
            problems.append("breakers.threshold must be at least 1")
        if self.failover.policy not in FAILOVER_POLICIES:
            problems.append(f"failover.policy must be one of {FAILOVER_POLICIES}, got {self.failover.policy!r}")
        if not 0 < self.failover.healthy_audit_delay_h < self.failover.max_audit_delay_h:
            problems.append("failover.healthy_audit_delay_h must be positive and below max_audit_delay_h")
        mon = self.monitoring
        if not mon.usage_warning < mon.usage_error < mon.usage_critical:
            problems.append("monitoring usage thresholds must be strictly increasing (warning < error < critical)")
        if not 0 < mon.workflow_failure_rate <= 1:
            problems.append("monitoring.workflow_failure_rate must be within (0, 1]")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self
