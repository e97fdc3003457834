"""Runtime configuration loaded from ``config.yaml`` with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

CONFIG_PATH = Path(__file__).with_name("config.yaml")

_LOCK_BACKENDS = {"auto", "advisory", "memoire"}


@dataclass(frozen=True)
class Config:
    """Engine settings assembled from the YAML file and environment variables."""

    database_url: str
    lock_backend: str = "auto"
    lock_timeout_seconds: float | None = 30.0
    arbiter_max_attempts: int = 1000
    designation_max_attempts: int = 1000
    cache_enabled: bool = False
    redis_url: str | None = None
    cache_ttl: int = 3600
    events_async: bool = True
    events_audit_table: bool = True
    log_level: str = "INFO"


def _positive_int(value, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _timeout(value) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 30.0
    return number if number > 0 else None


def config_from_dict(raw: dict | None) -> Config:
    raw = raw or {}
    database = raw.get("database", {}) or {}
    verrouillage = raw.get("verrouillage", {}) or {}
    cache = raw.get("cache", {}) or {}
    evenements = raw.get("evenements", {}) or {}

    backend = str(verrouillage.get("backend", "auto")).strip().lower()
    if backend not in _LOCK_BACKENDS:
        raise ValueError(f"verrouillage.backend inconnu: {backend!r}")

    return Config(
        database_url=os.environ.get("DATABASE_URL") or database.get("url") or "sqlite:///data/estimation.db",
        lock_backend=backend,
        lock_timeout_seconds=_timeout(verrouillage.get("timeout_seconds", 30)),
        arbiter_max_attempts=_positive_int(
            (raw.get("identifiants", {}) or {}).get("max_attempts"), 1000
        ),
        designation_max_attempts=_positive_int(
            (raw.get("designations", {}) or {}).get("max_attempts"), 1000
        ),
        cache_enabled=bool(cache.get("enabled", False)),
        redis_url=os.environ.get("REDIS_URL") or cache.get("redis_url"),
        cache_ttl=_positive_int(cache.get("ttl"), 3600),
        events_async=bool(evenements.get("asynchrone", True)),
        events_audit_table=bool(evenements.get("audit_table", True)),
        log_level=str((raw.get("logging", {}) or {}).get("level", "INFO")).upper(),
    )


def load_config(path: str | os.PathLike | None = None) -> Config:
    config_path = Path(path) if path else CONFIG_PATH
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return config_from_dict(raw)
