from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict

from .config import ConfigurationError

LOG = logging.getLogger(__name__)

BUCKET_ENV_VAR = "AWS_BUCKET"
REGION_ENV_VAR = "AWS_REGION"
DEFAULT_REGION = "eu-south-1"


class TransferError(Exception):
    """Raised when copying an artifact to or from remote storage fails."""


class Transfer(Protocol):
    def upload(self, local_path: Path, remote_key: str) -> str:
        ...

    def download(self, remote_uri: str, local_path: Path) -> Path:
        ...


class TransferSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: Optional[str] = None
    region: str = DEFAULT_REGION

    @classmethod
    def from_env(cls, require_bucket: bool) -> "TransferSettings":
        bucket = os.getenv(BUCKET_ENV_VAR)
        if require_bucket and not bucket:
            raise ConfigurationError(f"environment variable '{BUCKET_ENV_VAR}' is not set")

        region = os.getenv(REGION_ENV_VAR)
        if not region:
            LOG.warning(
                "environment variable '%s' is not set; defaulting to '%s'",
                REGION_ENV_VAR,
                DEFAULT_REGION,
            )
            region = DEFAULT_REGION
        return cls(bucket=bucket or None, region=region)


class S3Transfer:
    """Copies artifacts with the AWS CLI; credentials come from the AWS environment."""

    def __init__(self, settings: TransferSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> TransferSettings:
        return self._settings

    def upload(self, local_path: Path, remote_key: str) -> str:
        if not self._settings.bucket:
            raise TransferError("no bucket configured for uploads")
        s3_uri = f"s3://{self._settings.bucket}/{remote_key.lstrip('/')}"
        try:
            self._copy(str(local_path), s3_uri)
        except TransferError as exc:
            raise TransferError(f"failed to upload to S3: {exc}") from exc
        return s3_uri

    def download(self, remote_uri: str, local_path: Path) -> Path:
        try:
            self._copy(remote_uri, str(local_path))
        except TransferError as exc:
            raise TransferError(f"failed to download '{remote_uri}' from S3 bucket: {exc}") from exc
        return local_path

    def _copy(self, source: str, destination: str) -> None:
        cmd: List[str] = ["aws", "s3", "cp", source, destination, "--region", self._settings.region]
        LOG.debug("Copying %s to %s", source, destination)
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or b"").decode("utf-8", "ignore").strip()
            raise TransferError(stderr or f"aws exited with status {exc.returncode}") from exc
        except OSError as exc:
            raise TransferError(f"could not run aws: {exc}") from exc


class NullTransfer:
    """Stand-in used when remote transfer is disabled; never called by the job runner."""

    def upload(self, local_path: Path, remote_key: str) -> str:
        raise TransferError("remote transfer is disabled")

    def download(self, remote_uri: str, local_path: Path) -> Path:
        raise TransferError("remote transfer is disabled")


def build_transfer(enabled: bool, require_bucket: bool = True) -> Union[S3Transfer, NullTransfer]:
    """Validate the remote-transfer environment up front, or return a no-op stand-in."""
    if not enabled:
        return NullTransfer()
    return S3Transfer(TransferSettings.from_env(require_bucket=require_bucket))
