from __future__ import annotations

import logging
import os
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List

from dbdump.config import ConnectionConfig

from .base import EngineError

LOG = logging.getLogger(__name__)

EXCLUDED_DATABASES: FrozenSet[str] = frozenset({"template0", "template1", "postgres", "rdsadmin"})
MAINTENANCE_DATABASE = "postgres"
LIST_DATABASES_SQL = "SELECT datname FROM pg_database ORDER BY datname"


class PostgresEngine:
    """Dump, restore and enumerate PostgreSQL databases through the client tools."""

    def __init__(self, connection: ConnectionConfig, restore_jobs: int = 2) -> None:
        self._connection = connection
        self._restore_jobs = restore_jobs

    def dump(self, target: str, artifact_path: Path) -> None:
        # -F c: custom archive, restorable with pg_restore; -c: emit DROP before CREATE
        cmd = self._base_command("pg_dump") + ["-d", target, "-f", str(artifact_path), "-F", "c", "-c"]
        try:
            self._run(cmd)
        except EngineError as exc:
            if artifact_path.exists():
                artifact_path.unlink()
            raise EngineError(f"failed to dump '{target}': {exc}") from exc

    def list_targets(self) -> List[str]:
        cmd = self._base_command("psql") + ["-d", MAINTENANCE_DATABASE, "-t", "-A", "-c", LIST_DATABASES_SQL]
        try:
            output = self._run(cmd)
        except EngineError as exc:
            raise EngineError(f"could not list databases: {exc}") from exc

        databases: List[str] = []
        for line in output.splitlines():
            name = line.split("|")[0].strip()
            if name and name not in EXCLUDED_DATABASES:
                databases.append(name)
        return databases

    def restore(self, target: str, artifact_path: Path) -> None:
        cmd = self._base_command("pg_restore") + [
            "-d",
            target,
            "-j",
            str(self._restore_jobs),
            "--clean",
            "--if-exists",
            str(artifact_path),
        ]
        try:
            self._run(cmd)
        except EngineError as exc:
            raise EngineError(f"failed to restore '{target}': {exc}") from exc

    # Internal helpers ------------------------------------------------------
    def _base_command(self, tool: str) -> List[str]:
        return [
            tool,
            "-h",
            self._connection.host,
            "-p",
            str(self._connection.port),
            "-U",
            self._connection.user,
        ]

    @contextmanager
    def _credentials(self) -> Iterator[Dict[str, str]]:
        """Yield a private environment carrying the password for one command."""
        env = os.environ.copy()
        env["PGPASSWORD"] = self._connection.password
        try:
            yield env
        finally:
            env.clear()

    def _run(self, cmd: List[str]) -> str:
        LOG.debug("Running %s for %s", cmd[0], self._connection.host)
        with self._credentials() as env:
            try:
                completed = subprocess.run(cmd, env=env, check=True, capture_output=True)
            except subprocess.CalledProcessError as exc:
                stderr = (exc.stderr or b"").decode("utf-8", "ignore").strip()
                raise EngineError(stderr or f"{cmd[0]} exited with status {exc.returncode}") from exc
            except OSError as exc:
                raise EngineError(f"could not run {cmd[0]}: {exc}") from exc
        return completed.stdout.decode("utf-8", "ignore")
