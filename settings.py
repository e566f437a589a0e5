from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_ROOT_PREFIX_ENV = "HISTORY_ROOT_PREFIX"
_DEFAULT_DEVICE_ENV = "DEFAULT_DEVICE_ID"
_REALTIME_PATH_ENV = "REALTIME_DB_PERSISTENCE_PATH"
_PROFILE_COLLECTION_ENV = "PROFILE_COLLECTION_NAME"
_PROFILE_PATH_ENV = "PROFILE_PERSISTENCE_PATH"
_MAX_WATCHERS_ENV = "HISTORY_MAX_WATCHERS"
_COOKIE_NAME_ENV = "AUTH_COOKIE_NAME"
_MAX_FAILED_ATTEMPTS_ENV = "AUTH_MAX_FAILED_ATTEMPTS"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    history_root_prefix: str
    default_device_id: str
    realtime_persistence_path: Optional[str]
    profile_collection_name: str
    profile_persistence_path: Optional[str]
    history_max_watchers: int
    auth_cookie_name: str
    auth_max_failed_attempts: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        history_root_prefix=_read_str_env(
            _ROOT_PREFIX_ENV, "Clients/TyWRS0Zyusc3tbtcU0PcBPdXSjb2/devices"
        ).strip("/"),
        default_device_id=_read_str_env(_DEFAULT_DEVICE_ENV, "RPi001"),
        realtime_persistence_path=_read_optional_env(
            _REALTIME_PATH_ENV, "./tmp/realtime_db.json"
        ),
        profile_collection_name=_read_str_env(_PROFILE_COLLECTION_ENV, "users"),
        profile_persistence_path=_read_optional_env(_PROFILE_PATH_ENV, "./tmp/profiles.json"),
        history_max_watchers=_read_positive_int(_MAX_WATCHERS_ENV, 32),
        auth_cookie_name=_read_str_env(_COOKIE_NAME_ENV, "auth_token"),
        auth_max_failed_attempts=_read_positive_int(_MAX_FAILED_ATTEMPTS_ENV, 5),
        log_level=_read_log_level("INFO"),
    )
