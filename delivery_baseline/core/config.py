from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml


DEFAULT_SETTINGS: dict[str, Any] = {
    "db_path": ".delivery-baseline.sqlite3",
    "log_level": "WARNING",
    # Run primary delete + cascade in one store transaction.
    "atomic_cascades": True,
}

CONFIG_ENV = "DELIVERY_BASELINE_CONFIG"

ENV_OVERRIDES: dict[str, str] = {
    "DELIVERY_BASELINE_DB": "db_path",
    "DELIVERY_BASELINE_LOG_LEVEL": "log_level",
    "DELIVERY_BASELINE_ATOMIC_CASCADES": "atomic_cascades",
}

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    db_path: str
    log_level: str
    atomic_cascades: bool


def load_settings_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      db_path: path/to/store.sqlite3
      log_level: INFO
      atomic_cascades: true
    """
    p = Path(path)
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("settings file must be a mapping of key -> value")

    out: dict[str, Any] = {}
    for k, v in raw.items():
        if k not in DEFAULT_SETTINGS:
            raise ConfigError(f"unknown setting '{k}' (known: {', '.join(sorted(DEFAULT_SETTINGS))})")
        out[k] = v
    return out


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        if key == "atomic_cascades":
            out[key] = value.strip().lower() in {"1", "true", "yes", "on"}
        else:
            out[key] = value
    return out


def _coerce(merged: dict[str, Any]) -> Settings:
    db_path = merged["db_path"]
    if not isinstance(db_path, str) or not db_path.strip():
        raise ConfigError("db_path must be a non-empty string")

    log_level = merged["log_level"]
    if not isinstance(log_level, str) or log_level.strip().upper() not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {sorted(LOG_LEVELS)}")

    atomic = merged["atomic_cascades"]
    if not isinstance(atomic, bool):
        raise ConfigError("atomic_cascades must be a boolean")

    return Settings(db_path=db_path.strip(), log_level=log_level.strip().upper(), atomic_cascades=atomic)


def load_settings(
    config_file: str | None = None, env: Mapping[str, str] | None = None
) -> Settings:
    """DEFAULT_SETTINGS, then the settings file, then environment variables."""
    env = os.environ if env is None else env
    merged = dict(DEFAULT_SETTINGS)

    path = config_file or env.get(CONFIG_ENV)
    if path:
        merged.update(load_settings_file(path))

    merged.update(_env_overrides(env))
    return _coerce(merged)
