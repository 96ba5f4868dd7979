import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from dbdump.engines import EngineError
from dbdump.transfer import TransferError

FIXED_TIME = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
STAMP = "20240101_000000"


class FakeEngine:
    """In-memory engine that writes small dump files and records every call."""

    def __init__(self, databases=None, fail_dump=(), fail_restore=(), fail_list=False):
        self.databases = list(databases or [])
        self.fail_dump = set(fail_dump)
        self.fail_restore = set(fail_restore)
        self.fail_list = fail_list
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def dump(self, target, artifact_path: Path):
        self._record("dump", target, artifact_path)
        if target in self.fail_dump:
            raise EngineError(f"failed to dump '{target}': connection refused")
        artifact_path.write_bytes(b"PGDMP")

    def list_targets(self):
        self._record("list_targets")
        if self.fail_list:
            raise EngineError("could not list databases: password authentication failed")
        return list(self.databases)

    def restore(self, target, artifact_path: Path):
        self._record("restore", target, artifact_path)
        if target in self.fail_restore:
            raise EngineError(f"failed to restore '{target}': archive is corrupt")


class FakeTransfer:
    def __init__(self, bucket="bucket", fail_upload=False, fail_download=False):
        self.bucket = bucket
        self.fail_upload = fail_upload
        self.fail_download = fail_download
        self.calls = []

    def upload(self, local_path, remote_key):
        self.calls.append(("upload", local_path, remote_key))
        if self.fail_upload:
            raise TransferError("failed to upload to S3: access denied")
        return f"s3://{self.bucket}/{remote_key}"

    def download(self, remote_uri, local_path):
        self.calls.append(("download", remote_uri, local_path))
        if self.fail_download:
            raise TransferError(f"failed to download '{remote_uri}' from S3 bucket: not found")
        local_path.write_bytes(b"PGDMP")
        return local_path


@pytest.fixture
def clock():
    return lambda: FIXED_TIME


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def transfer():
    return FakeTransfer()
