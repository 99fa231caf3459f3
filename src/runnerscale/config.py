from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml
from sqlalchemy.engine import URL, make_url


@dataclass(slots=True)
class DatabaseConfig:
    host: str = "localhost"
    port: int = 5432
    user: str = "peertube1"
    password: str = ""
    name: str = "peertube1"
    url: str | None = None

    def sqlalchemy_url(self) -> URL | str:
        if self.url:
            return self.url
        # An empty password is left out so libpq can fall back to PGPASSWORD or .pgpass.
        return URL.create(
            "postgresql+psycopg",
            username=self.user,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.name,
        )

    @property
    def display_name(self) -> str:
        if self.url:
            return make_url(self.url).render_as_string(hide_password=True)
        return f"{self.host}:{self.port}/{self.name}"


@dataclass(frozen=True, slots=True)
class ScalingConfig:
    up_command: str
    down_command: str
    runner_prefix: str = "runner"
    min_runners: int = 0
    max_runners: int = 1
    min_pending: int = 10
    command_timeout_seconds: float | None = None


@dataclass(slots=True)
class ReconcileConfig:
    interval_seconds: int = 300


@dataclass(slots=True)
class MetricsConfig:
    listen_address: str = ":9042"


@dataclass(slots=True)
class LogConfig:
    path: Path | None = None


@dataclass(slots=True)
class AppConfig:
    scaling: ScalingConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)


def _require(mapping: dict, key: str, section: str) -> object:
    if key not in mapping:
        raise ValueError(f"Missing `{section}.{key}` in config")
    return mapping[key]


def _text(mapping: dict, key: str, section: str, default: str | None = None) -> str:
    value = mapping[key] if key in mapping else default
    if value is None:
        raise ValueError(f"`{section}.{key}` must be set")
    if isinstance(value, (dict, list)):
        raise ValueError(f"`{section}.{key}` must be a string")
    return str(value)


def _integer(mapping: dict, key: str, section: str, default: int) -> int:
    value = mapping.get(key, default)
    if value is None or isinstance(value, bool):
        raise ValueError(f"`{section}.{key}` must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`{section}.{key}` must be an integer, got {value!r}") from exc


def _timeout(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("`scaling.command_timeout_seconds` must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"`scaling.command_timeout_seconds` must be a number, got {value!r}") from exc


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    database_raw = _section(raw, "database")
    scaling_raw = _require(raw, "scaling", "root")
    reconcile_raw = _section(raw, "reconcile")
    metrics_raw = _section(raw, "metrics")
    log_raw = _section(raw, "log")
    if not isinstance(scaling_raw, dict):
        raise ValueError("`scaling` must be a mapping")

    url = database_raw.get("url")
    database = DatabaseConfig(
        host=_text(database_raw, "host", "database", "localhost"),
        port=_integer(database_raw, "port", "database", 5432),
        user=_text(database_raw, "user", "database", "peertube1"),
        password=str(database_raw.get("password") or ""),
        name=_text(database_raw, "name", "database", "peertube1"),
        url=str(url) if url else None,
    )
    if not 1 <= database.port <= 65535:
        raise ValueError("`database.port` must be between 1 and 65535")

    scaling = ScalingConfig(
        up_command=_text(scaling_raw, "up_command", "scaling"),
        down_command=_text(scaling_raw, "down_command", "scaling"),
        runner_prefix=_text(scaling_raw, "runner_prefix", "scaling", "runner"),
        min_runners=_integer(scaling_raw, "min_runners", "scaling", 0),
        max_runners=_integer(scaling_raw, "max_runners", "scaling", 1),
        min_pending=_integer(scaling_raw, "min_pending", "scaling", 10),
        command_timeout_seconds=_timeout(scaling_raw.get("command_timeout_seconds")),
    )
    if not scaling.up_command or not scaling.down_command:
        raise ValueError("`scaling.up_command` and `scaling.down_command` must not be empty")
    if not scaling.runner_prefix:
        raise ValueError("`scaling.runner_prefix` must not be empty")
    if scaling.min_runners < 0:
        raise ValueError("`scaling.min_runners` must be >= 0")
    if scaling.max_runners < scaling.min_runners:
        raise ValueError("`scaling.max_runners` must be >= `scaling.min_runners`")
    if scaling.min_pending < 1:
        raise ValueError("`scaling.min_pending` must be >= 1")
    if scaling.command_timeout_seconds is not None and scaling.command_timeout_seconds <= 0:
        raise ValueError("`scaling.command_timeout_seconds` must be > 0 when set")

    reconcile = ReconcileConfig(interval_seconds=_integer(reconcile_raw, "interval_seconds", "reconcile", 300))
    if reconcile.interval_seconds < 1:
        raise ValueError("`reconcile.interval_seconds` must be >= 1")

    metrics = MetricsConfig(listen_address=_text(metrics_raw, "listen_address", "metrics", ":9042"))

    log_path = log_raw.get("path")
    log = LogConfig()
    if log_path:
        log.path = Path(str(log_path)).expanduser()
        if not log.path.is_absolute():
            log.path = config_path.parent / log.path

    return AppConfig(
        scaling=scaling,
        database=database,
        reconcile=reconcile,
        metrics=metrics,
        log=log,
    )


def ensure_local_paths(config: AppConfig) -> None:
    if config.log.path is not None:
        config.log.path.parent.mkdir(parents=True, exist_ok=True)
