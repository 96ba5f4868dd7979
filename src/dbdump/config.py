from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

CONFIG_ENV_VAR = "DBDUMP_CONFIG"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5432
DEFAULT_USER = "postgres"
DEFAULT_ENGINE = "postgres"
DEFAULT_ENVIRONMENT = "staging"
DEFAULT_RESTORE_JOBS = 2


class ConfigurationError(Exception):
    """Raised when the invocation is misconfigured, before any job is launched."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# --- Connection --------------------------------------------------------------


class ConnectionConfig(_Frozen):
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    user: str = DEFAULT_USER
    password: str = Field(repr=False)

    @field_validator("password")
    @classmethod
    def _require_password(cls, value: str) -> str:
        if not value:
            raise ValueError("a password is required (-W)")
        return value

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"invalid port {value}")
        return value


# --- Defaults file -----------------------------------------------------------


class FileDefaults(_Frozen):
    """Optional per-site defaults loaded from a YAML file."""

    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    engine: Optional[str] = None
    environment: Optional[str] = None
    work_dir: Optional[Path] = None
    max_parallel: Optional[int] = None
    restore_jobs: Optional[int] = None

    @field_validator("work_dir")
    @classmethod
    def _expand_work_dir(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value is not None else None

    @field_validator("max_parallel", "restore_jobs")
    @classmethod
    def _positive(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("must be a positive integer")
        return value


def load_defaults(path: Optional[Path]) -> FileDefaults:
    """Load the ``defaults:`` block of a YAML file; no path means no defaults."""
    if path is None:
        env_path = os.getenv(CONFIG_ENV_VAR)
        if not env_path:
            return FileDefaults()
        path = Path(env_path)

    path = path.expanduser()
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    try:
        return FileDefaults.model_validate(raw.get("defaults") or {})
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


# --- Command settings --------------------------------------------------------


class DumpSettings(_Frozen):
    connection: ConnectionConfig
    engine: str = DEFAULT_ENGINE
    environment: str = DEFAULT_ENVIRONMENT
    backup_all: bool = False
    databases: List[str] = Field(default_factory=list)
    local_only: bool = False
    work_dir: Path = Field(default_factory=Path.cwd)
    max_parallel: Optional[int] = None

    @model_validator(mode="after")
    def _require_targets(self) -> "DumpSettings":
        if not self.backup_all and not self.databases:
            raise ValueError("No databases specified. Use '-d' or '-a'.")
        return self


class RestoreSettings(_Frozen):
    connection: ConnectionConfig
    engine: str = DEFAULT_ENGINE
    database: str
    source: str
    jobs: int = DEFAULT_RESTORE_JOBS
    from_remote: bool = True
    work_dir: Path = Field(default_factory=Path.cwd)

    @field_validator("database", "source")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("jobs")
    @classmethod
    def _positive_jobs(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("parallel restore jobs must be positive")
        return value


def _pick(cli_value: Any, file_value: Any, fallback: Any) -> Any:
    if cli_value is not None:
        return cli_value
    if file_value is not None:
        return file_value
    return fallback


def _connection(values: Mapping[str, Any], defaults: FileDefaults) -> Dict[str, Any]:
    return {
        "host": _pick(values.get("host"), defaults.host, DEFAULT_HOST),
        "port": _pick(values.get("port"), defaults.port, DEFAULT_PORT),
        "user": _pick(values.get("user"), defaults.user, DEFAULT_USER),
        "password": values.get("password") or "",
    }


def build_dump_settings(values: Mapping[str, Any], defaults: FileDefaults) -> DumpSettings:
    """Merge parsed CLI values over file defaults into validated dump settings."""
    try:
        return DumpSettings(
            connection=ConnectionConfig(**_connection(values, defaults)),
            engine=_pick(values.get("engine"), defaults.engine, DEFAULT_ENGINE),
            environment=_pick(values.get("environment"), defaults.environment, DEFAULT_ENVIRONMENT),
            backup_all=bool(values.get("backup_all")),
            databases=list(values.get("databases") or []),
            local_only=bool(values.get("local_only")),
            work_dir=_pick(values.get("work_dir"), defaults.work_dir, Path.cwd()),
            max_parallel=_pick(values.get("max_parallel"), defaults.max_parallel, None),
        )
    except ValidationError as exc:
        raise ConfigurationError(_describe(exc)) from exc


def build_restore_settings(values: Mapping[str, Any], defaults: FileDefaults) -> RestoreSettings:
    """Merge parsed CLI values over file defaults into validated restore settings."""
    try:
        return RestoreSettings(
            connection=ConnectionConfig(**_connection(values, defaults)),
            engine=_pick(values.get("engine"), defaults.engine, DEFAULT_ENGINE),
            database=values.get("database") or "",
            source=values.get("source") or "",
            jobs=_pick(values.get("jobs"), defaults.restore_jobs, DEFAULT_RESTORE_JOBS),
            from_remote=_pick(values.get("from_remote"), None, True),
            work_dir=_pick(values.get("work_dir"), defaults.work_dir, Path.cwd()),
        )
    except ValidationError as exc:
        raise ConfigurationError(_describe(exc)) from exc


def _describe(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        message = error["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)
