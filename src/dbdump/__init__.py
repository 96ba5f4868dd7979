"""Parallel database dump and restore orchestration package."""

from __future__ import annotations

__version__ = "0.0.2"

from .config import ConfigurationError, DumpSettings, RestoreSettings  # noqa: F401,E402
from .job_engine import JobResult, run_dump_job, run_restore_job  # noqa: F401,E402
from .orchestrator import BackupOrchestrator  # noqa: F401,E402
