"""Configuration loader for ooosync.

This module provides:
- Typed config models (pydantic BaseModel)
- Precedence-aware loader: file (YAML) < ENV (OOOSYNC__*) < CLI overrides
- Minimal coercion for ENV values (bool/int/float/list)

ENV format (nested via delimiter):
  OOOSYNC__sync__display_name=Alex
  OOOSYNC__sync__target_calendar_ids=team1@group.calendar.google.com,team2@group.calendar.google.com
  OOOSYNC__sync__lookup_failure_policy=strict
  OOOSYNC__logging__level=DEBUG

Example:
  cfg = load_config("/data/config.yaml", cli_overrides={"sync": {"dry_run": True}})
  print(cfg.sync.target_calendar_ids)
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping, MutableMapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# ----------------------------
# Pydantic models (typed config)
# ----------------------------

_DEFAULT_KEYWORDS = [
    "out of office",
    "ooo",
    "vacation",
    "leave",
    "away",
    "holiday",
    "time off",
    "pto",
]


class GoogleConfig(BaseModel):
    credentials_file: str | None = None  # or GOOGLE_CREDENTIALS_JSON via ENV
    token_store: str = "/data/google_token.json"
    source_calendar_id: str = "primary"


class SyncConfig(BaseModel):
    display_name: str | None = None
    target_calendar_ids: list[str] = Field(default_factory=list)
    ooo_keywords: list[str] = Field(default_factory=lambda: list(_DEFAULT_KEYWORDS))
    lookahead_days: int = Field(90, ge=1, le=730)
    cleanup_back_days: int = Field(30, ge=0, le=365)
    cleanup_ahead_days: int = Field(180, ge=1, le=730)
    lookup_failure_policy: Literal["insert_anyway", "strict"] = "insert_anyway"
    # Reproduce the loose dedup check: any mirror of the owner in the window counts
    match_any_owner_mirror: bool = False
    # Target calendars processed concurrently (1 = sequential)
    max_workers: int = Field(1, ge=1, le=16)
    max_retries: int = Field(5, ge=0, le=10)
    backoff_initial_sec: float = Field(1.0, gt=0, le=60)
    request_timeout_sec: float = Field(30.0, gt=0, le=300)
    dry_run: bool = False

    @field_validator("display_name")
    @classmethod
    def _validate_display_name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("sync.display_name must not be blank")
        if " - OOO: " in v:
            raise ValueError("sync.display_name must not contain ' - OOO: '")
        return v

    @field_validator("target_calendar_ids", mode="before")
    @classmethod
    def _split_targets(cls, v: Any) -> Any:
        # A single ENV value without commas arrives as a plain string
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("ooo_keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            kws = [str(k).strip().lower() for k in v if str(k).strip()]
            if not kws:
                raise ValueError("sync.ooo_keywords must contain at least one keyword")
            return kws
        return v


class StateConfig(BaseModel):
    db_path: str = "/data/state.sqlite"


class LoggingConfig(BaseModel):
    # Allow using alias "json" in config/env while avoiding BaseModel.json clash
    model_config = ConfigDict(populate_by_name=True)
    level: str = "INFO"
    as_json: bool = Field(True, alias="json")

    @field_validator("level")
    @classmethod
    def _normalize_level(cls, v: str) -> str:
        lv = (v or "INFO").upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if lv not in allowed:
            raise ValueError(f"logging.level must be one of {sorted(allowed)}")
        return lv


class RuntimeConfig(BaseModel):
    lock_path: str = "/tmp/ooosync.lock"


def _default_google_config() -> GoogleConfig:
    return GoogleConfig()


def _default_sync_config() -> SyncConfig:
    return SyncConfig()


def _default_state_config() -> StateConfig:
    return StateConfig()


def _default_logging_config() -> LoggingConfig:
    return LoggingConfig(json=True)


def _default_runtime_config() -> RuntimeConfig:
    return RuntimeConfig()


class AppConfig(BaseModel):
    google: GoogleConfig = Field(default_factory=_default_google_config)
    sync: SyncConfig = Field(default_factory=_default_sync_config)
    state: StateConfig = Field(default_factory=_default_state_config)
    logging: LoggingConfig = Field(default_factory=_default_logging_config)
    runtime: RuntimeConfig = Field(default_factory=_default_runtime_config)


__all__ = [
    "AppConfig",
    "GoogleConfig",
    "LoggingConfig",
    "RuntimeConfig",
    "StateConfig",
    "SyncConfig",
    "load_config",
    "merge_dicts",
    "read_env_config",
]


# ----------------------------
# Utilities
# ----------------------------


_BOOL_TRUE = {"1", "true", "yes", "on", "y", "t"}
_BOOL_FALSE = {"0", "false", "no", "off", "n", "f"}

_LIST_SPLIT_RE = re.compile(r"\s*,\s*")


def _coerce_value(val: str) -> Any:
    """Best-effort coercion for ENV values."""
    s = val.strip()

    ls = s.lower()
    if ls in _BOOL_TRUE:
        return True
    if ls in _BOOL_FALSE:
        return False

    if re.fullmatch(r"[+-]?\d+", s):
        return int(s)
    if re.fullmatch(r"[+-]?\d+\.\d*", s):
        return float(s)

    # lists (comma-separated)
    if "," in s:
        return [p for p in _LIST_SPLIT_RE.split(s) if p != ""]

    return s


def merge_dicts(
    base: MutableMapping[str, Any], override: Mapping[str, Any]
) -> MutableMapping[str, Any]:
    """Deep-merge override into base (mutates base). Lists/atoms are replaced."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, Mapping):
            merge_dicts(base[k], v)
        else:
            base[k] = v
    return base


def read_yaml_config(path: Path | None) -> dict[str, Any]:
    if not path:
        return {}
    p = Path(path).resolve()
    if not p.exists():
        return {}
    with p.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping in {p}")
    return data


def read_env_config(prefix: str = "OOOSYNC__", nested_delim: str = "__") -> dict[str, Any]:
    """Build nested dict from environment variables.

    Keys must start with `prefix` (default 'OOOSYNC__').
    Nested keys split by `nested_delim`.
    """
    if not prefix.endswith(nested_delim):
        raise ValueError("prefix must end with the nested_delim (default 'OOOSYNC__' and '__').")

    result: dict[str, Any] = {}
    plen = len(prefix)
    for key, raw in os.environ.items():
        if not key.startswith(prefix):
            continue
        path_parts = key[plen:].split(nested_delim)
        cursor = result
        for part in path_parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path_parts[-1]] = _coerce_value(raw)
    return result


# ----------------------------
# Loader (precedence: file < env < cli_overrides)
# ----------------------------


def load_config(
    file_path: str | Path | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
    env_prefix: str = "OOOSYNC__",
    env_nested_delim: str = "__",
) -> AppConfig:
    """Load AppConfig with precedence: file < env < CLI overrides.

    Raises ValueError with the pydantic details when validation fails.
    """
    merged: dict[str, Any] = {}

    merge_dicts(merged, read_yaml_config(Path(file_path) if file_path else None))
    merge_dicts(merged, read_env_config(prefix=env_prefix, nested_delim=env_nested_delim))

    if cli_overrides:
        if not isinstance(cli_overrides, Mapping):
            raise TypeError("cli_overrides must be a mapping (nested dict-like).")
        merge_dicts(merged, cli_overrides)

    try:
        return AppConfig.model_validate(merged)
    except ValidationError as ve:
        raise ValueError(f"Invalid configuration: {ve}") from ve
