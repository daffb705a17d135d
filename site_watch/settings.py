from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


PROBE_METHODS = ("GET", "HEAD")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip())
    except Exception:
        return float(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _coerce_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return bool(default)
    if isinstance(value, str):
        s = value.strip().lower()
        if s in {"1", "true", "yes", "y", "on"}:
            return True
        if s in {"0", "false", "no", "n", "off"}:
            return False
        return bool(default)
    return bool(value)


@dataclass(frozen=True)
class WatchSettings:
    db_path: str = field(default_factory=lambda: _env_str("SITE_WATCH_DB_PATH", "./websites.db"))

    # Telegram
    telegram_bot_token: str = field(default_factory=lambda: os.getenv("TELEGRAM_BOT_TOKEN", "").strip())
    # When set, every alert goes to this chat instead of the endpoint owner (single-admin delivery).
    admin_chat_id: str = field(default_factory=lambda: os.getenv("SITE_WATCH_ADMIN_CHAT_ID", "").strip())

    # Polling
    interval_seconds: float = field(default_factory=lambda: _env_float("SITE_WATCH_INTERVAL_SECONDS", 300.0))
    probe_timeout_seconds: float = field(default_factory=lambda: _env_float("SITE_WATCH_PROBE_TIMEOUT_SECONDS", 5.0))
    probe_method: str = field(default_factory=lambda: _env_str("SITE_WATCH_PROBE_METHOD", "GET").upper())
    # Overlapping ticks are allowed by default; probes are independent and idempotent.
    allow_overlap: bool = field(default_factory=lambda: _env_bool("SITE_WATCH_ALLOW_OVERLAP", True))

    # Alerting
    notify_on_recovery: bool = field(default_factory=lambda: _env_bool("SITE_WATCH_NOTIFY_ON_RECOVERY", False))

    def __post_init__(self) -> None:
        if not str(self.db_path or "").strip():
            raise ValueError("db_path must not be empty")
        if float(self.interval_seconds) <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {self.interval_seconds!r}")
        if float(self.probe_timeout_seconds) <= 0:
            raise ValueError(f"probe_timeout_seconds must be > 0, got {self.probe_timeout_seconds!r}")
        if self.probe_method not in PROBE_METHODS:
            raise ValueError(f"probe_method must be one of {PROBE_METHODS}, got {self.probe_method!r}")


def load_config(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def settings_from_config(config: dict[str, Any], *, base: WatchSettings | None = None) -> WatchSettings:
    """
    Overlay a YAML config mapping on top of env-derived settings.

    Keys that are absent (or null) keep the environment/default value.
    """
    settings = base if base is not None else WatchSettings()
    overrides: dict[str, Any] = {}

    if config.get("db_path") is not None:
        overrides["db_path"] = str(config["db_path"]).strip()
    if config.get("interval_seconds") is not None:
        overrides["interval_seconds"] = float(config["interval_seconds"])
    if config.get("probe_timeout_seconds") is not None:
        overrides["probe_timeout_seconds"] = float(config["probe_timeout_seconds"])
    if config.get("probe_method") is not None:
        overrides["probe_method"] = str(config["probe_method"]).strip().upper()
    if config.get("allow_overlap") is not None:
        overrides["allow_overlap"] = _coerce_bool(config["allow_overlap"], default=settings.allow_overlap)

    alerting_cfg = config.get("alerting") or {}
    if not isinstance(alerting_cfg, dict):
        raise ValueError("alerting must be a mapping")
    if alerting_cfg.get("notify_on_recovery") is not None:
        overrides["notify_on_recovery"] = _coerce_bool(
            alerting_cfg["notify_on_recovery"], default=settings.notify_on_recovery
        )
    if alerting_cfg.get("admin_chat_id") is not None:
        overrides["admin_chat_id"] = str(alerting_cfg["admin_chat_id"]).strip()

    return dataclasses.replace(settings, **overrides) if overrides else settings


def load_settings(config_path: Path | None = None) -> WatchSettings:
    if config_path is None:
        return WatchSettings()
    return settings_from_config(load_config(config_path))
