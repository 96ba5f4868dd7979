from __future__ import annotations

from typing import Callable, Dict

from dbdump.config import ConfigurationError, ConnectionConfig

from .base import DatabaseEngine, EngineError
from .postgres import EXCLUDED_DATABASES, PostgresEngine

EngineFactory = Callable[[ConnectionConfig, int], DatabaseEngine]

ENGINES: Dict[str, EngineFactory] = {
    "postgres": lambda connection, restore_jobs: PostgresEngine(connection, restore_jobs=restore_jobs),
}

__all__ = [
    "DatabaseEngine",
    "EngineError",
    "EXCLUDED_DATABASES",
    "PostgresEngine",
    "create_engine",
]


def create_engine(engine_type: str, connection: ConnectionConfig, restore_jobs: int = 2) -> DatabaseEngine:
    factory = ENGINES.get(engine_type)
    if factory is None:
        raise ConfigurationError(f"Unsupported database type: {engine_type}")
    return factory(connection, restore_jobs)
