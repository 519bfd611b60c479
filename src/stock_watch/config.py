from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class MonitorConfig:
    data_dir: Path
    default_interval_seconds: float = 300.0
    default_max_retries: int = 3
    timeout_seconds: float = 30.0
    http_max_retries: int = 2
    proxy_url: str | None = None
    remote_checker_url: str | None = None
    log_enabled: bool = True
    log_capacity: int = 500
    settle_delay_seconds: float = 0.5
    instant_check_stagger_seconds: float = 2.0


def load_config(*, data_dir: str | None = None) -> MonitorConfig:
    return MonitorConfig(
        data_dir=Path(data_dir or os.getenv("STOCK_WATCH_DATA_DIR", "").strip() or "data"),
        default_interval_seconds=_env_float("DEFAULT_INTERVAL_SECONDS", 300.0),
        default_max_retries=_env_int("DEFAULT_MAX_RETRIES", 3),
        timeout_seconds=_env_float("TIMEOUT_SECONDS", 30.0),
        http_max_retries=_env_int("HTTP_MAX_RETRIES", 2),
        proxy_url=os.getenv("PROXY_URL", "").strip() or None,
        remote_checker_url=os.getenv("REMOTE_CHECKER_URL", "").strip() or None,
        log_enabled=os.getenv("MONITOR_LOG", "1").strip() != "0",
        log_capacity=_env_int("LOG_CAPACITY", 500),
        settle_delay_seconds=_env_float("SETTLE_DELAY_SECONDS", 0.5),
        instant_check_stagger_seconds=_env_float("INSTANT_CHECK_STAGGER_SECONDS", 2.0),
    )
