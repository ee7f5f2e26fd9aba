from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_MEASUREMENTS_PATH_ENV = "MEASUREMENTS_CSV_PATH"
_STATE_PATH_ENV = "EXPORT_STATE_PATH"
_BUCKET_NAME_ENV = "EXPORT_BUCKET_NAME"
_BUCKET_ROOT_ENV = "EXPORT_ROOT_PATH"
_OBJECT_KEY_ENV = "EXPORT_OBJECT_KEY"
_FORMAT_ENV = "EXPORT_FORMAT"
_RULES_PATH_ENV = "EXPORT_RULES_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_EXPORT_FORMATS = ("csv", "binary")


@dataclass(frozen=True)
class Settings:
    measurements_path: str
    state_path: Optional[str]
    bucket_name: str
    bucket_root_path: Optional[str]
    object_key: str
    export_format: str
    rules_path: Optional[str]
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


def _read_export_format(default: str) -> str:
    value = os.getenv(_FORMAT_ENV)
    if value is None:
        return default
    candidate = value.strip().lower()
    return candidate if candidate in _EXPORT_FORMATS else default


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
        measurements_path=_read_str_env(_MEASUREMENTS_PATH_ENV, "./tmp/measurements.csv"),
        state_path=_read_optional_env(_STATE_PATH_ENV, "./tmp/export_state.json"),
        bucket_name=_read_str_env(_BUCKET_NAME_ENV, "exports"),
        bucket_root_path=_read_optional_env(_BUCKET_ROOT_ENV, "./tmp/exports"),
        object_key=_read_str_env(_OBJECT_KEY_ENV, "measurements_z13.csv"),
        export_format=_read_export_format("csv"),
        rules_path=_read_optional_env(_RULES_PATH_ENV, None),
        log_level=_read_log_level("INFO"),
    )
