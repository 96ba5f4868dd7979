from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from .engines import DatabaseEngine, EngineError
from .logger import close_job_logger, open_job_logger
from .storage import download_destination, dump_paths, restore_paths
from .transfer import Transfer, TransferError

LOG = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobResult:
    target: str
    kind: str
    status: str
    started_at: datetime
    completed_at: datetime
    log_path: Optional[Path] = None
    artifact_path: Optional[Path] = None
    remote_uri: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == "success"


class JobStepError(Exception):
    """Raised by a pipeline step after it has logged its own failure."""


Pipeline = Callable[[logging.Logger, JobResult], None]


def _run_job(kind: str, target: str, log_path: Path, started_at: datetime, pipeline: Pipeline, clock: Clock) -> JobResult:
    result = JobResult(target=target, kind=kind, status="failed", started_at=started_at, completed_at=started_at)

    try:
        job_log = open_job_logger(log_path)
    except OSError as exc:
        LOG.error("Fatal: could not open log file '%s': %s", log_path, exc)
        result.errors.append(f"could not open log file: {exc}")
        result.completed_at = clock()
        return result

    result.log_path = log_path
    try:
        pipeline(job_log, result)
        result.status = "success"
    except JobStepError as exc:
        result.errors.append(str(exc))
    except Exception as exc:  # noqa: BLE001
        job_log.error("Unexpected error: %s", exc)
        LOG.debug("Unexpected error in %s job for '%s'", kind, target, exc_info=True)
        result.errors.append(str(exc))
    finally:
        close_job_logger(job_log)
        result.completed_at = clock()
    return result


# --- Dump --------------------------------------------------------------------


def run_dump_job(
    target: str,
    engine: DatabaseEngine,
    transfer: Transfer,
    *,
    environment: str,
    local_only: bool,
    work_dir: Path,
    clock: Clock = utcnow,
) -> JobResult:
    """Dump ``target``, then upload and remove the artifact unless ``local_only``."""
    started_at = clock()
    paths = dump_paths(work_dir, environment, target, started_at)
    artifact = paths.artifact

    def pipeline(log: logging.Logger, result: JobResult) -> None:
        log.info("Starting dump process for '%s'...", target)

        log.info("1. Dumping database...")
        try:
            engine.dump(target, artifact)
        except EngineError as exc:
            log.error("Error during dump: %s", exc)
            raise JobStepError(str(exc)) from exc
        result.artifact_path = artifact
        log.info("Dump successful.")

        if local_only:
            log.info("Skipping S3 upload as requested.")
            log.info("Process finished successfully. Your dump file is: %s", artifact)
            return

        log.info("2. Uploading to S3...")
        try:
            remote_uri = transfer.upload(artifact, artifact.name)
        except TransferError as exc:
            log.error("Error during upload: %s", exc)
            log.info("The local file '%s' has been kept for manual inspection.", artifact)
            raise JobStepError(str(exc)) from exc
        result.remote_uri = remote_uri
        log.info("Upload successful. File uploaded to: %s", remote_uri)

        log.info("3. Removing local dump file...")
        try:
            artifact.unlink()
        except OSError as exc:
            log.warning("Warning: could not delete local file '%s': %s", artifact, exc)
        else:
            result.artifact_path = None
            log.info("Local file '%s' has been deleted.", artifact)
        log.info("Process finished successfully. Dump available at: %s", remote_uri)

    return _run_job("dump", target, paths.log, started_at, pipeline, clock)


# --- Restore -----------------------------------------------------------------


def run_restore_job(
    target: str,
    engine: DatabaseEngine,
    transfer: Transfer,
    *,
    source: str,
    from_remote: bool,
    work_dir: Path,
    clock: Clock = utcnow,
) -> JobResult:
    """Restore ``target`` from ``source``, downloading it first when ``from_remote``."""
    started_at = clock()
    paths = restore_paths(work_dir, target, started_at)

    def pipeline(log: logging.Logger, result: JobResult) -> None:
        log.info("Starting restore process for '%s' using '%s' dump...", target, source)

        if from_remote:
            log.info("Downloading dump from S3...")
            try:
                local_path = transfer.download(source, download_destination(work_dir, source))
            except (TransferError, ValueError) as exc:
                log.error("Error downloading dump from S3: %s", exc)
                raise JobStepError(str(exc)) from exc
            log.info("Download successful. File downloaded to: %s", local_path)
        else:
            local_path = Path(source)
        result.artifact_path = local_path

        log.info("Restoring database...")
        try:
            engine.restore(target, local_path)
        except EngineError as exc:
            log.error("Error during restoring the DB '%s': %s", target, exc)
            raise JobStepError(str(exc)) from exc
        log.info("Database '%s' restored successfully.", target)

    return _run_job("restore", target, paths.log, started_at, pipeline, clock)
