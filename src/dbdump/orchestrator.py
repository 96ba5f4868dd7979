from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .config import ConfigurationError
from .engines import DatabaseEngine, EngineError
from .job_engine import JobResult, run_dump_job, run_restore_job, utcnow
from .transfer import Transfer

LOG = logging.getLogger(__name__)

Task = Callable[[str], JobResult]


class BackupOrchestrator:
    """Runs one dump or restore job per target concurrently and waits for all of them."""

    def __init__(
        self,
        engine: DatabaseEngine,
        transfer: Transfer,
        work_dir: Path,
        max_parallel: Optional[int] = None,
    ) -> None:
        self._engine = engine
        self._transfer = transfer
        self._work_dir = work_dir
        self._max_parallel = max_parallel

    def resolve_targets(self, discover_all: bool, names: Optional[Sequence[str]] = None) -> List[str]:
        if discover_all:
            if names:
                LOG.warning("Ignoring explicit databases %s because all databases were requested", list(names))
            try:
                discovered = self._engine.list_targets()
            except EngineError as exc:
                raise ConfigurationError(f"Error listing databases: {exc}") from exc
            if not discovered:
                raise ConfigurationError("No databases found to back up.")
            return discovered

        if not names:
            raise ConfigurationError("No databases specified. Use '-d' or '-a'.")

        targets: List[str] = []
        for name in names:
            if name in targets:
                LOG.warning("Database '%s' requested more than once; running a single job", name)
                continue
            targets.append(name)
        return targets

    def run_dump(self, targets: Sequence[str], environment: str, local_only: bool) -> List[JobResult]:
        def task(target: str) -> JobResult:
            return run_dump_job(
                target,
                self._engine,
                self._transfer,
                environment=environment,
                local_only=local_only,
                work_dir=self._work_dir,
            )

        return self.run(targets, "dump", task)

    def run_restore(self, targets: Sequence[str], source: str, from_remote: bool) -> List[JobResult]:
        def task(target: str) -> JobResult:
            return run_restore_job(
                target,
                self._engine,
                self._transfer,
                source=source,
                from_remote=from_remote,
                work_dir=self._work_dir,
            )

        return self.run(targets, "restore", task)

    def run(self, targets: Sequence[str], label: str, task: Task) -> List[JobResult]:
        """Launch ``task`` once per target and block until every job has finished."""
        if not targets:
            raise ConfigurationError("No databases to process.")

        self._work_dir.mkdir(parents=True, exist_ok=True)
        workers = len(targets)
        if self._max_parallel:
            workers = min(workers, self._max_parallel)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"dbdump-{label}") as pool:
            futures: List[Future] = []
            for target in targets:
                LOG.info("Spawning %s task for '%s'", label, target)
                futures.append(pool.submit(task, target))
            LOG.info("All %s tasks started; waiting for %d to complete", label, len(futures))
            wait(futures)

        results: List[JobResult] = []
        for target, future in zip(targets, futures):
            error = future.exception()
            if error is not None:
                LOG.error("%s task for '%s' crashed: %s", label.capitalize(), target, error)
                now = utcnow()
                results.append(
                    JobResult(target=target, kind=label, status="failed", started_at=now, completed_at=now, errors=[str(error)])
                )
                continue
            results.append(future.result())

        for result in results:
            if result.success:
                LOG.info(
                    "%s job for '%s' finished in %.2fs",
                    result.kind.capitalize(),
                    result.target,
                    (result.completed_at - result.started_at).total_seconds(),
                )
            else:
                LOG.warning("%s job for '%s' failed; see %s", result.kind.capitalize(), result.target, result.log_path)
        return results
