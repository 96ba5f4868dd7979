"""Tests for the per-database dump and restore pipelines."""

from pathlib import Path

from conftest import STAMP, FakeEngine, FakeTransfer

from dbdump.job_engine import run_dump_job, run_restore_job


def _dumps(directory: Path):
    return sorted(directory.glob("*.dump"))


class TestDumpJob:
    def test_remote_success_removes_artifact_and_logs_uri(self, tmp_path, engine, transfer, clock):
        result = run_dump_job(
            "app", engine, transfer, environment="prod", local_only=False, work_dir=tmp_path, clock=clock
        )

        assert result.success
        assert result.kind == "dump"
        assert result.remote_uri == f"s3://bucket/prod_app_{STAMP}.dump"
        assert result.artifact_path is None
        assert _dumps(tmp_path) == []
        assert transfer.calls == [("upload", tmp_path / f"prod_app_{STAMP}.dump", f"prod_app_{STAMP}.dump")]

        log_path = tmp_path / f"backup_log_prod_app_{STAMP}.log"
        assert result.log_path == log_path
        content = log_path.read_text()
        assert "Dump successful." in content
        assert f"s3://bucket/prod_app_{STAMP}.dump" in content
        assert "has been deleted" in content

    def test_log_lines_carry_timestamp_prefix(self, tmp_path, engine, transfer, clock):
        run_dump_job("app", engine, transfer, environment="prod", local_only=True, work_dir=tmp_path, clock=clock)

        lines = (tmp_path / f"backup_log_prod_app_{STAMP}.log").read_text().splitlines()
        assert lines
        for line in lines:
            date, time_of_day = line.split(" ")[:2]
            assert len(date.split("/")) == 3
            assert len(time_of_day.split(":")) == 3

    def test_local_only_keeps_artifact_without_transfer(self, tmp_path, engine, transfer, clock):
        result = run_dump_job(
            "billing", engine, transfer, environment="staging", local_only=True, work_dir=tmp_path, clock=clock
        )

        assert result.success
        assert transfer.calls == []
        assert _dumps(tmp_path) == [tmp_path / f"staging_billing_{STAMP}.dump"]
        assert result.artifact_path == tmp_path / f"staging_billing_{STAMP}.dump"
        assert "Skipping S3 upload" in result.log_path.read_text()

    def test_dump_failure_leaves_no_artifact_and_skips_upload(self, tmp_path, transfer, clock):
        engine = FakeEngine(fail_dump={"app"})

        result = run_dump_job("app", engine, transfer, environment="prod", local_only=False, work_dir=tmp_path, clock=clock)

        assert not result.success
        assert "connection refused" in result.errors[0]
        assert _dumps(tmp_path) == []
        assert transfer.calls == []
        content = result.log_path.read_text()
        assert "Error during dump" in content
        assert "Uploading" not in content

    def test_upload_failure_retains_artifact_and_logs_notice(self, tmp_path, engine, clock):
        transfer = FakeTransfer(fail_upload=True)

        result = run_dump_job("app", engine, transfer, environment="prod", local_only=False, work_dir=tmp_path, clock=clock)

        assert not result.success
        artifact = tmp_path / f"prod_app_{STAMP}.dump"
        assert _dumps(tmp_path) == [artifact]
        assert result.artifact_path == artifact
        content = result.log_path.read_text()
        assert "Error during upload" in content
        assert "kept for manual inspection" in content

    def test_cleanup_failure_is_only_a_warning(self, tmp_path, engine, transfer, clock, monkeypatch):
        def refuse(self):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(Path, "unlink", refuse)

        result = run_dump_job("app", engine, transfer, environment="prod", local_only=False, work_dir=tmp_path, clock=clock)

        assert result.success
        assert result.remote_uri is not None
        assert "Warning: could not delete local file" in result.log_path.read_text()

    def test_unopenable_log_aborts_before_any_work(self, tmp_path, engine, transfer, clock):
        missing_dir = tmp_path / "does-not-exist"

        result = run_dump_job("app", engine, transfer, environment="prod", local_only=False, work_dir=missing_dir, clock=clock)

        assert not result.success
        assert result.log_path is None
        assert engine.calls == []
        assert "could not open log file" in result.errors[0]

    def test_unexpected_error_is_contained(self, tmp_path, transfer, clock):
        class ExplodingEngine(FakeEngine):
            def dump(self, target, artifact_path):
                raise RuntimeError("boom")

        result = run_dump_job(
            "app", ExplodingEngine(), transfer, environment="prod", local_only=False, work_dir=tmp_path, clock=clock
        )

        assert not result.success
        assert result.errors == ["boom"]
        assert "Unexpected error: boom" in result.log_path.read_text()


class TestRestoreJob:
    def test_remote_source_is_downloaded_then_restored(self, tmp_path, engine, transfer, clock):
        source = "s3://bucket/orders_20240101_000000.dump"

        result = run_restore_job(
            "orders", engine, transfer, source=source, from_remote=True, work_dir=tmp_path, clock=clock
        )

        local = tmp_path / "orders_20240101_000000.dump"
        assert result.success
        assert transfer.calls == [("download", source, local)]
        assert engine.calls == [("restore", "orders", local)]
        assert local.exists()
        assert result.log_path == tmp_path / f"restore_log_orders_{STAMP}.log"

    def test_download_failure_skips_restore(self, tmp_path, engine, clock):
        transfer = FakeTransfer(fail_download=True)

        result = run_restore_job(
            "orders",
            engine,
            transfer,
            source="s3://bucket/orders_20240101_000000.dump",
            from_remote=True,
            work_dir=tmp_path,
            clock=clock,
        )

        assert not result.success
        assert engine.calls == []
        content = result.log_path.read_text()
        assert "Error downloading dump from S3" in content
        assert "Error during restoring" not in content

    def test_local_source_skips_download(self, tmp_path, engine, transfer, clock):
        source = tmp_path / "orders.dump"
        source.write_bytes(b"PGDMP")

        result = run_restore_job(
            "orders", engine, transfer, source=str(source), from_remote=False, work_dir=tmp_path, clock=clock
        )

        assert result.success
        assert transfer.calls == []
        assert engine.calls == [("restore", "orders", source)]

    def test_restore_failure_is_logged(self, tmp_path, transfer, clock):
        engine = FakeEngine(fail_restore={"orders"})

        result = run_restore_job(
            "orders", engine, transfer, source="/tmp/orders.dump", from_remote=False, work_dir=tmp_path, clock=clock
        )

        assert not result.success
        assert "Error during restoring the DB 'orders'" in result.log_path.read_text()

    def test_uri_without_file_name_fails_the_download_step(self, tmp_path, engine, transfer, clock):
        result = run_restore_job(
            "orders", engine, transfer, source="s3://bucket/", from_remote=True, work_dir=tmp_path, clock=clock
        )

        assert not result.success
        assert transfer.calls == []
        assert engine.calls == []
