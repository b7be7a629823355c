import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from utils.env_loader import load_environments

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    log_level: str = "WARNING"
    log_json: bool = False
    connect_timeout_sec: int = 10
    config_home: Optional[Path] = None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def get_settings() -> Settings:
    load_environments()
    config_home = os.getenv("QUERYGATE_CONFIG_HOME")
    return Settings(
        log_level=(os.getenv("QUERYGATE_LOG_LEVEL") or "WARNING").strip().upper(),
        log_json=(os.getenv("QUERYGATE_LOG_JSON", "0").strip().lower() in _TRUE_VALUES),
        connect_timeout_sec=_int_env("QUERYGATE_CONNECT_TIMEOUT", 10),
        config_home=Path(config_home).expanduser() if config_home else None,
    )
