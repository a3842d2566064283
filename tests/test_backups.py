#tests/test_backups.py

"""Test backup, verification, restore and retention of backups."""

import gzip
import io
import os
import stat
import tarfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from deployment_engine.backups.service import (
    MB,
    BackupKind,
    BackupManager,
    CleanupOutcome,
    RestoreOutcome,
    verify_backup_file,
)
from deployment_engine.core.errors import ValidationFailed
from deployment_engine.core.models import Outcome
from deployment_engine.health.probes import ComposeProbes
from deployment_engine.readiness.gate import ReadinessGate

from conftest import COMPOSE_PS, healthy_stack

NOW = datetime(2026, 10, 16, 12, 0, 0)
STAMP = "20261016-120000"
DUMP = "CREATE TABLE anchors (id integer);\n"
RDB = b"REDIS0009\xfa\tredis-ver\x057.2.4\xff"


@pytest.fixture
def backup_dir(project_root):
    return project_root / "backups"


@pytest.fixture
def manager(compose, project_root, backup_dir, stores, executor):
    healthy_stack(executor)
    return BackupManager(
        compose, project_root, backup_dir, stores["root"],
        now=lambda: NOW, disk_check=lambda path: 10 * 1024 * MB,
    )


def write_gzip(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with gzip.open(path, "wb") as fh:
        fh.write(data)
    return path


def write_tar(path: Path, files: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            tar.addfile(info, io.BytesIO(content))
    return path


def copy_dump(content=RDB):
    """Stand in for docker cp writing the dump to its last argument."""
    def effect(argv):
        Path(argv[-1]).write_bytes(content)
    return effect


def age(path: Path, days: int) -> Path:
    stamp = (NOW - timedelta(days=days)).timestamp()
    os.utime(path, (stamp, stamp))
    return path


class TestVerifyBackupFile:
    """Test backup file integrity checks."""

    def test_valid_gzip(self, tmp_path):
        """Test a complete gzip file passes and reports its size."""
        path = write_gzip(tmp_path / "postgres-1.sql.gz", DUMP.encode())

        assert verify_backup_file(path) == path.stat().st_size

    def test_missing(self, tmp_path):
        """Test a missing file is rejected."""
        with pytest.raises(ValidationFailed):
            verify_backup_file(tmp_path / "postgres-1.sql.gz")

    def test_empty(self, tmp_path):
        """Test an empty file is rejected."""
        path = tmp_path / "postgres-1.sql.gz"
        path.write_bytes(b"")

        with pytest.raises(ValidationFailed):
            verify_backup_file(path)

    def test_not_gzip(self, tmp_path):
        """Test a file that is not gzip is rejected."""
        path = tmp_path / "postgres-1.sql.gz"
        path.write_bytes(b"plain text, not compressed")

        with pytest.raises(ValidationFailed):
            verify_backup_file(path)

    def test_truncated(self, tmp_path):
        """Test a truncated stream is rejected."""
        path = tmp_path / "redis-1.rdb.gz"
        path.write_bytes(gzip.compress(os.urandom(4096))[:-16])

        with pytest.raises(ValidationFailed):
            verify_backup_file(path)

    def test_tar(self, tmp_path):
        """Test tar archives are read to verify them."""
        good = write_tar(tmp_path / "app-files-1.tar.gz", {".env": b"A=1\n"})
        bad = tmp_path / "app-files-2.tar.gz"
        bad.write_bytes(b"\x1f\x8b garbage")

        assert verify_backup_file(good) > 0
        with pytest.raises(ValidationFailed):
            verify_backup_file(bad)


class TestBackupDatabase:
    """Test PostgreSQL dumps."""

    def test_dump_is_compressed_and_verified(self, manager, executor, backup_dir):
        """Test a dump is written gzip-compressed under a timestamped name."""
        executor.when("pg_dump", stdout=DUMP)

        result = manager.backup_database()

        assert result.outcome == Outcome.SUCCESS
        assert result.path == backup_dir / f"postgres-{STAMP}.sql.gz"
        assert gzip.decompress(result.path.read_bytes()).decode() == DUMP
        assert result.size_bytes == result.path.stat().st_size
        dump_cmd = executor.commands_containing("pg_dump")[0]
        assert dump_cmd[-3:] == ("-U", "trustanchor", "trustanchor")

    def test_uses_configured_credentials(self, manager, executor, stores):
        """Test user and database come from the root env file."""
        stores["root"].set_many({"POSTGRES_USER": "ta_user", "POSTGRES_DB": "ta_db"})
        executor.when("pg_dump", stdout=DUMP)

        manager.backup_database()

        assert executor.commands_containing("pg_dump")[0][-3:] == ("-U", "ta_user", "ta_db")

    def test_empty_dump_fails(self, manager, executor, backup_dir):
        """Test an empty dump is never reported as a backup."""
        executor.when("pg_dump", stdout="")

        result = manager.backup_database()

        assert result.outcome == Outcome.FATAL
        assert list(backup_dir.iterdir()) == []

    def test_dump_error_fails(self, manager, executor):
        """Test pg_dump errors are reported with stderr."""
        executor.when("pg_dump", exit_code=1, stderr='role "trustanchor" does not exist')

        result = manager.backup_database()

        assert not result.ok
        assert "does not exist" in result.message

    def test_stopped_container(self, manager, executor):
        """Test no dump is attempted while postgres is down."""
        executor.when(COMPOSE_PS, stdout="NAME STATUS\n")

        result = manager.backup_database()

        assert result.outcome == Outcome.FATAL
        assert "not running" in result.message
        assert executor.commands_containing("pg_dump") == []

    def test_low_disk_space(self, compose, project_root, backup_dir, stores, executor):
        """Test the free space check runs first."""
        healthy_stack(executor)
        manager = BackupManager(compose, project_root, backup_dir, stores["root"], disk_check=lambda path: 10 * MB)

        result = manager.backup_database()

        assert result.outcome == Outcome.FATAL
        assert "disk space" in result.message
        assert executor.commands_containing("pg_dump") == []

    def test_waits_for_readiness(self, compose, project_root, backup_dir, stores, executor, clock):
        """Test an unready database fails after the readiness timeout."""
        healthy_stack(executor)
        executor.when("pg_isready", exit_code=2)
        manager = BackupManager(
            compose, project_root, backup_dir, stores["root"],
            readiness=ReadinessGate(sleep=clock.sleep, clock=clock),
            probes=ComposeProbes(compose, rpc=None),
            disk_check=lambda path: 10 * 1024 * MB,
        )

        result = manager.backup_database()

        assert result.outcome == Outcome.FATAL
        assert clock.now >= 30
        assert executor.commands_containing("pg_dump") == []


class TestBackupRedis:
    """Test Redis snapshots."""

    def test_snapshot(self, manager, executor, backup_dir):
        """Test SAVE, copy out and compression."""
        executor.when(COMPOSE_PS, "q redis", stdout="c0ffee\n")
        executor.when("docker cp", effect=copy_dump())

        result = manager.backup_redis()

        assert result.outcome == Outcome.SUCCESS
        assert result.path == backup_dir / f"redis-{STAMP}.rdb.gz"
        assert gzip.decompress(result.path.read_bytes()) == RDB
        assert not (backup_dir / f"redis-{STAMP}.rdb").exists()
        assert executor.commands_containing("redis-cli", "SAVE")
        assert executor.commands_containing("docker cp", "c0ffee:/data/dump.rdb")

    def test_multiple_containers(self, manager, executor):
        """Test an ambiguous container is refused."""
        executor.when(COMPOSE_PS, "q redis", stdout="c0ffee\nbadd1e\n")

        result = manager.backup_redis()

        assert result.outcome == Outcome.FATAL
        assert executor.commands_containing("docker cp") == []

    def test_empty_copy(self, manager, executor, backup_dir):
        """Test an empty dump is removed and reported."""
        executor.when(COMPOSE_PS, "q redis", stdout="c0ffee\n")
        executor.when("docker cp", effect=copy_dump(b""))

        result = manager.backup_redis()

        assert result.outcome == Outcome.FATAL
        assert list(backup_dir.iterdir()) == []


class TestBackupAppFiles:
    """Test env file archives."""

    def test_archives_existing_env_files(self, manager, project_root):
        """Test only the env files that exist are archived."""
        (project_root / "veriscope_ta_dashboard" / ".env").write_text('DB_PASSWORD="x"\n', encoding="utf-8")

        result = manager.backup_app_files()

        assert result.outcome == Outcome.SUCCESS
        assert result.path.name == f"app-files-{STAMP}.tar.gz"
        with tarfile.open(result.path, "r:gz") as tar:
            assert sorted(tar.getnames()) == [".env", "veriscope_ta_dashboard/.env"]

    def test_nothing_to_archive(self, compose, tmp_path, stores):
        """Test a tree without env files is skipped, not failed."""
        manager = BackupManager(compose, tmp_path / "empty", tmp_path / "backups", stores["root"])

        result = manager.backup_app_files()

        assert result.outcome == Outcome.RECOVERABLE
        assert result.ok
        assert result.path is None

    def test_full_backup_continues_after_failure(self, manager, executor):
        """Test every component is attempted and failures are named."""
        executor.when("pg_dump", exit_code=1, stderr="connection refused")
        executor.when(COMPOSE_PS, "q redis", stdout="c0ffee\n")
        executor.when("docker cp", effect=copy_dump())

        result = manager.full_backup()

        assert not result.ok
        assert result.failed == [BackupKind.DATABASE]
        assert [r.kind for r in result.results] == [BackupKind.DATABASE, BackupKind.REDIS, BackupKind.APP_FILES]


class TestValidateBackupPath:
    """Test restore source checks."""

    def test_inside_backup_dir(self, manager, backup_dir):
        """Test files in the backup directory are accepted."""
        path = write_gzip(backup_dir / "postgres-1.sql.gz", b"SELECT 1;")

        assert manager.validate_backup_path(path) == path.resolve()

    def test_outside_requires_opt_in(self, manager, tmp_path_factory):
        """Test files elsewhere need an explicit opt-in."""
        path = write_gzip(tmp_path_factory.mktemp("elsewhere") / "postgres-1.sql.gz", b"SELECT 1;")

        with pytest.raises(ValidationFailed) as exc_info:
            manager.validate_backup_path(path)
        assert exc_info.value.remediation
        assert manager.validate_backup_path(path, allow_outside=True) == path.resolve()

    @pytest.mark.parametrize("path", [None, "", "backups/nope.sql.gz"])
    def test_missing(self, manager, path):
        """Test absent files are rejected."""
        with pytest.raises(ValidationFailed):
            manager.validate_backup_path(path)


class TestRestoreDatabase:
    """Test database restore."""

    def test_restores_when_confirmed(self, manager, executor, backup_dir):
        """Test the decompressed SQL is piped into psql."""
        path = write_gzip(backup_dir / "postgres-1.sql.gz", DUMP.encode())

        result = manager.restore_database(path, confirmed=True)

        assert result.outcome == RestoreOutcome.RESTORED
        argv, stdin = executor.inputs[0]
        assert "psql" in argv
        assert stdin == DUMP

    def test_unconfirmed_changes_nothing(self, manager, executor, backup_dir):
        """Test an unconfirmed restore never runs psql."""
        path = write_gzip(backup_dir / "postgres-1.sql.gz", DUMP.encode())

        result = manager.restore_database(path)

        assert result.outcome == RestoreOutcome.CANCELLED
        assert executor.commands_containing("psql") == []

    def test_corrupt_file_rejected_first(self, manager, executor, backup_dir):
        """Test a corrupt backup is refused before touching the database."""
        path = backup_dir / "postgres-1.sql.gz"
        backup_dir.mkdir()
        path.write_bytes(b"corrupt")

        result = manager.restore_database(path, confirmed=True)

        assert result.outcome == RestoreOutcome.FAILED
        assert executor.calls == []


class TestRestoreRedis:
    """Test Redis restore."""

    def test_restores_dump(self, manager, executor, backup_dir):
        """Test the dump is copied into the stopped container and redis restarted."""
        path = write_gzip(backup_dir / "redis-1.rdb.gz", RDB)
        copied = []
        executor.when(COMPOSE_PS, "q redis", stdout="c0ffee\n")
        executor.when("docker cp", effect=lambda argv: copied.append(Path(argv[2]).read_bytes()))

        result = manager.restore_redis(path, confirmed=True)

        assert result.outcome == RestoreOutcome.RESTORED
        assert copied == [RDB]
        steps = [verb for c in executor.calls for verb in ("stop", "cp", "start") if verb in c]
        assert steps == ["stop", "cp", "start"]

    def test_copy_failure_restarts_redis(self, manager, executor, backup_dir):
        """Test redis is started again when the copy fails."""
        path = write_gzip(backup_dir / "redis-1.rdb.gz", RDB)
        executor.when(COMPOSE_PS, "q redis", stdout="c0ffee\n")
        executor.when("docker cp", exit_code=1, stderr="no such container")

        result = manager.restore_redis(path, confirmed=True)

        assert result.outcome == RestoreOutcome.FAILED
        assert executor.commands_containing("start", "redis")


class TestRestoreAppFiles:
    """Test env file restore."""

    def test_restores_env_files(self, manager, project_root, backup_dir):
        """Test files are replaced after the current ones are saved."""
        path = write_tar(backup_dir / "app-files-1.tar.gz", {".env": b'VERISCOPE_TARGET="fed_mainnet"\n'})

        result = manager.restore_app_files(path, confirmed=True)

        assert result.outcome == RestoreOutcome.RESTORED
        restored = project_root / ".env"
        assert restored.read_text(encoding="utf-8") == 'VERISCOPE_TARGET="fed_mainnet"\n'
        assert stat.S_IMODE(restored.stat().st_mode) == 0o600
        assert (backup_dir / f"pre-restore-{STAMP}.tar.gz").is_file()

    def test_rejects_unexpected_entries(self, manager, project_root, backup_dir):
        """Test archives with other paths are refused before extraction."""
        original = (project_root / ".env").read_text(encoding="utf-8")
        path = write_tar(backup_dir / "app-files-1.tar.gz", {".env": b"A=1\n", "../outside": b"x"})

        result = manager.restore_app_files(path, confirmed=True)

        assert result.outcome == RestoreOutcome.FAILED
        assert "../outside" in result.message
        assert (project_root / ".env").read_text(encoding="utf-8") == original
        assert not (project_root.parent / "outside").exists()

    def test_unconfirmed_changes_nothing(self, manager, project_root, backup_dir):
        """Test an unconfirmed restore leaves files alone."""
        original = (project_root / ".env").read_text(encoding="utf-8")
        path = write_tar(backup_dir / "app-files-1.tar.gz", {".env": b"A=1\n"})

        result = manager.restore_app_files(path)

        assert result.outcome == RestoreOutcome.CANCELLED
        assert (project_root / ".env").read_text(encoding="utf-8") == original


class TestRetention:
    """Test listing and cleanup of old backups."""

    @pytest.fixture
    def aged(self, backup_dir):
        old = age(write_gzip(backup_dir / "postgres-20260801-000000.sql.gz", b"old"), 40)
        recent = age(write_gzip(backup_dir / "redis-20261015-000000.rdb.gz", b"new"), 1)
        notes = backup_dir / "notes.txt"
        notes.write_text("keep", encoding="utf-8")
        age(notes, 90)
        return old, recent, notes

    def test_list_newest_first(self, manager, aged):
        """Test only backup files are listed, newest first."""
        old, recent, _ = aged

        entries = manager.list_backups()

        assert [e.path for e in entries] == [recent, old]
        assert [e.kind for e in entries] == [BackupKind.REDIS, BackupKind.DATABASE]

    @pytest.mark.parametrize("token", [None, "", "delete", "yes"])
    def test_requires_phrase(self, manager, aged, token):
        """Test nothing is deleted without the exact phrase."""
        old, recent, notes = aged

        result = manager.clean_old_backups(30, token)

        assert result.outcome == CleanupOutcome.CANCELLED
        assert [e.path for e in result.candidates] == [old]
        assert old.exists() and recent.exists() and notes.exists()

    def test_deletes_only_old_backups(self, manager, aged):
        """Test old backups go while recent ones and other files stay."""
        old, recent, notes = aged

        result = manager.clean_old_backups(30, "DELETE")

        assert result.outcome == CleanupOutcome.DELETED
        assert result.deleted == [old]
        assert not old.exists()
        assert recent.exists() and notes.exists()

    def test_nothing_old(self, manager, aged):
        """Test a generous threshold finds nothing."""
        result = manager.clean_old_backups(365, "DELETE")

        assert result.outcome == CleanupOutcome.NOTHING_TO_DELETE
        assert result.ok
