from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class DumpPaths:
    log: Path
    artifact: Path


@dataclass(frozen=True)
class RestorePaths:
    log: Path


def dump_paths(work_dir: Path, environment: str, target: str, started_at: datetime) -> DumpPaths:
    stamp = format_timestamp(started_at)
    return DumpPaths(
        log=work_dir / f"backup_log_{environment}_{target}_{stamp}.log",
        artifact=work_dir / f"{environment}_{target}_{stamp}.dump",
    )


def restore_paths(work_dir: Path, target: str, started_at: datetime) -> RestorePaths:
    return RestorePaths(log=work_dir / f"restore_log_{target}_{format_timestamp(started_at)}.log")


def download_destination(work_dir: Path, remote_uri: str) -> Path:
    """Local path for a remote object: its base name inside ``work_dir``."""
    name = PurePosixPath(urlparse(remote_uri).path).name
    if not name:
        raise ValueError(f"cannot derive a file name from '{remote_uri}'")
    return work_dir / name
