# deployment_engine/backups/service.py
"""
Backup Manager.

Dumps PostgreSQL, snapshots Redis and archives the env files into
timestamped gzip files under the backup directory. A backup is reported
successful only after its file exists, is non-empty and decompresses
cleanly. Restores and retention cleanup are destructive: nothing is
overwritten or deleted without an explicit confirmation.
"""

import gzip
import logging
import os
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from deployment_engine.core.errors import ValidationFailed
from deployment_engine.core.models import Outcome
from deployment_engine.orchestrator.preflight import free_disk_bytes
from deployment_engine.readiness.gate import ReadinessOutcome

logger = logging.getLogger(__name__)
operations_logger = logging.getLogger("deployment_engine.backups.operations")
security_logger = logging.getLogger("deployment_engine.security")

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
CLEANUP_PHRASE = "DELETE"
DEFAULT_RETENTION_DAYS = 30
OPERATIONS_LOG = "backup-restore.log"

ENV_FILES = (".env", "veriscope_ta_dashboard/.env", "veriscope_ta_node/.env")
REDIS_DUMP = "/data/dump.rdb"

MB = 1024 ** 2
READY_TIMEOUT_SECONDS = 30
DUMP_TIMEOUT_SECONDS = 1800


class BackupKind(Enum):
    DATABASE = "database"
    REDIS = "redis"
    APP_FILES = "app_files"

    @property
    def prefix(self) -> str:
        return {"database": "postgres-", "redis": "redis-", "app_files": "app-files-"}[self.value]

    @property
    def suffix(self) -> str:
        return {"database": ".sql.gz", "redis": ".rdb.gz", "app_files": ".tar.gz"}[self.value]

    @property
    def min_free_mb(self) -> int:
        return 100 if self == BackupKind.DATABASE else 50

    def matches(self, name: str) -> bool:
        return name.startswith(self.prefix) and name.endswith(self.suffix)


class RestoreOutcome(Enum):
    RESTORED = "restored"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CleanupOutcome(Enum):
    DELETED = "deleted"
    NOTHING_TO_DELETE = "nothing_to_delete"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class BackupResult:
    kind: BackupKind
    outcome: Outcome
    path: Optional[Path] = None
    message: str = ""
    size_bytes: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome != Outcome.FATAL


@dataclass
class FullBackupResult:
    results: List[BackupResult] = field(default_factory=list)

    @property
    def failed(self) -> List[BackupKind]:
        return [r.kind for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class RestoreResult:
    kind: BackupKind
    outcome: RestoreOutcome
    message: str = ""
    path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.outcome == RestoreOutcome.RESTORED


@dataclass(frozen=True)
class BackupEntry:
    kind: BackupKind
    path: Path
    size_bytes: int
    modified: datetime


@dataclass
class CleanupResult:
    outcome: CleanupOutcome
    candidates: List[BackupEntry] = field(default_factory=list)
    deleted: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome in (CleanupOutcome.DELETED, CleanupOutcome.NOTHING_TO_DELETE)


# ============================================
# FILE CHECKS
# ============================================

def verify_backup_file(path: Path) -> int:
    """
    Check a backup file is present, non-empty and readable as an archive.

    Returns:
        The file size in bytes

    Raises:
        ValidationFailed: if the file is missing, empty or corrupt
    """
    path = Path(path)
    if not path.is_file():
        raise ValidationFailed(f"Backup file not found: {path}")
    size = path.stat().st_size
    if size == 0:
        raise ValidationFailed(f"Backup file is empty: {path}")

    try:
        if path.name.endswith(".tar.gz"):
            with tarfile.open(path, "r:gz") as tar:
                tar.getmembers()
        elif path.suffix == ".gz":
            with gzip.open(path, "rb") as fh:
                # Read to the end so truncated streams and CRC errors surface
                while fh.read(MB):
                    pass
    except (OSError, EOFError, tarfile.TarError) as e:
        raise ValidationFailed(f"Backup file is corrupted: {path} ({e})")
    return size


def _gzip_file(source: Path, target: Path) -> None:
    with open(source, "rb") as src, gzip.open(target, "wb") as dst:
        shutil.copyfileobj(src, dst)


class BackupManager:

    def __init__(
        self,
        compose,
        project_root: Path,
        backup_dir: Path,
        root_store,
        readiness=None,
        probes=None,
        now: Callable[[], datetime] = datetime.now,
        disk_check: Callable[[Path], int] = free_disk_bytes,
        ready_timeout: float = READY_TIMEOUT_SECONDS,
    ):
        self.compose = compose
        self.project_root = Path(project_root)
        self.backup_dir = Path(backup_dir)
        self.root_store = root_store
        self.readiness = readiness
        self.probes = probes
        self.now = now
        self.disk_check = disk_check
        self.ready_timeout = ready_timeout

    @property
    def operations_log(self) -> Path:
        return self.backup_dir / OPERATIONS_LOG

    # -------------------------
    # HELPERS
    # -------------------------

    def _record(self, operation: str, status: str, details: str) -> None:
        operations_logger.info(f"{operation} [{status}] {details}")

    def _timestamp(self) -> str:
        return self.now().strftime(TIMESTAMP_FORMAT)

    def _db_credentials(self):
        user = self.root_store.get("POSTGRES_USER") or "trustanchor"
        db = self.root_store.get("POSTGRES_DB") or "trustanchor"
        return user, db

    def _prepare(self, kind: BackupKind) -> Optional[str]:
        """Return a problem with the backup directory or free space, or None."""
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return f"Cannot create backup directory {self.backup_dir}: {e}"
        if not os.access(self.backup_dir, os.W_OK):
            return f"Backup directory not writable: {self.backup_dir}"

        free_mb = self.disk_check(self.backup_dir) // MB
        if free_mb < kind.min_free_mb:
            return f"Insufficient disk space: {free_mb}MB available, {kind.min_free_mb}MB required"
        return None

    def _service_ready(self, service: str) -> Optional[str]:
        """Return why ``service`` cannot be used right now, or None."""
        if not self.compose.is_running(service):
            return f"{service} container is not running; start it with: docker compose up -d"
        if self.readiness is None or self.probes is None:
            return None
        outcome = self.readiness.await_ready(
            getattr(self.probes, service),
            interval_seconds=2,
            timeout_seconds=self.ready_timeout,
            name=service,
        )
        if outcome != ReadinessOutcome.READY:
            return f"{service} not ready after {self.ready_timeout}s"
        return None

    def _failed(self, kind: BackupKind, message: str, path: Optional[Path] = None) -> BackupResult:
        if path is not None and path.exists():
            path.unlink()
        logger.error(f"❌ {kind.value} backup failed: {message}")
        self._record(f"{kind.name}_BACKUP", "FAILED", message)
        return BackupResult(kind, Outcome.FATAL, message=message)

    def _verified(self, kind: BackupKind, path: Path) -> BackupResult:
        try:
            size = verify_backup_file(path)
        except ValidationFailed as e:
            return self._failed(kind, str(e), path)

        logger.info(f"✅ Backup verified: {path} ({size} bytes)")
        self._record(f"{kind.name}_BACKUP", "SUCCESS", f"{path} ({size} bytes)")
        return BackupResult(kind, Outcome.SUCCESS, path=path, message=f"Backed up to {path}", size_bytes=size)

    # ============ BACKUP ============

    def backup_database(self) -> BackupResult:
        kind = BackupKind.DATABASE
        problem = self._prepare(kind) or self._service_ready("postgres")
        if problem:
            return self._failed(kind, problem)

        user, db = self._db_credentials()
        logger.info(f"Backing up PostgreSQL database {db}...")
        dump = self.compose.exec("postgres", "pg_dump", "-U", user, db, timeout=DUMP_TIMEOUT_SECONDS)
        if not dump.ok:
            return self._failed(kind, f"pg_dump failed: {dump.stderr.strip() or dump.failure_kind.value}")
        if not dump.stdout.strip():
            return self._failed(kind, "pg_dump produced no output")

        path = self.backup_dir / f"{kind.prefix}{self._timestamp()}{kind.suffix}"
        try:
            with gzip.open(path, "wt", encoding="utf-8") as fh:
                fh.write(dump.stdout)
        except OSError as e:
            return self._failed(kind, f"Cannot write {path}: {e}", path)
        return self._verified(kind, path)

    def backup_redis(self) -> BackupResult:
        kind = BackupKind.REDIS
        problem = self._prepare(kind) or self._service_ready("redis")
        if problem:
            return self._failed(kind, problem)

        save = self.compose.exec("redis", "redis-cli", "SAVE", timeout=300)
        if not save.ok:
            return self._failed(kind, f"Redis SAVE failed: {save.stderr.strip()}")

        containers = self.compose.container_ids("redis")
        if len(containers) != 1:
            return self._failed(kind, f"Expected one redis container, found {len(containers)}")

        raw = self.backup_dir / f"{kind.prefix}{self._timestamp()}.rdb"
        copy = self.compose.executor.run("docker", ["cp", f"{containers[0]}:{REDIS_DUMP}", str(raw)], timeout=300)
        if not copy.ok:
            return self._failed(kind, f"docker cp failed: {copy.stderr.strip()}", raw)
        if not raw.is_file() or raw.stat().st_size == 0:
            return self._failed(kind, "Redis dump is empty or was not copied", raw)

        path = raw.with_name(raw.name + ".gz")
        try:
            _gzip_file(raw, path)
        except OSError as e:
            return self._failed(kind, f"Cannot compress {raw}: {e}", path)
        finally:
            if raw.exists():
                raw.unlink()
        return self._verified(kind, path)

    def backup_app_files(self) -> BackupResult:
        kind = BackupKind.APP_FILES
        problem = self._prepare(kind)
        if problem:
            return self._failed(kind, problem)

        present = [name for name in ENV_FILES if (self.project_root / name).is_file()]
        if not present:
            logger.warning("⚠️  No .env files found to back up")
            self._record(f"{kind.name}_BACKUP", "SKIPPED", "No .env files found")
            return BackupResult(kind, Outcome.RECOVERABLE, message="No .env files found to back up")

        path = self.backup_dir / f"{kind.prefix}{self._timestamp()}{kind.suffix}"
        try:
            with tarfile.open(path, "w:gz") as tar:
                for name in present:
                    tar.add(self.project_root / name, arcname=name)
        except (OSError, tarfile.TarError) as e:
            return self._failed(kind, f"Cannot write {path}: {e}", path)
        return self._verified(kind, path)

    def full_backup(self) -> FullBackupResult:
        result = FullBackupResult()
        for step in (self.backup_database, self.backup_redis, self.backup_app_files):
            result.results.append(step())

        if result.ok:
            logger.info(f"✅ Full backup completed: {self.backup_dir}")
            self._record("FULL_BACKUP", "SUCCESS", f"All components backed up to {self.backup_dir}")
        else:
            failed = ", ".join(k.name for k in result.failed)
            logger.error(f"⚠️  Full backup completed with errors: {failed}")
            self._record("FULL_BACKUP", "PARTIAL", f"Failed: {failed}")
        return result

    # ============ RESTORE ============

    def validate_backup_path(self, path, allow_outside: bool = False) -> Path:
        """
        Raises:
            ValidationFailed: if no file is given, it does not exist, or it
                lies outside the backup directory and project root
        """
        if not path:
            raise ValidationFailed("No backup file specified")
        path = Path(path)
        if not path.is_file():
            raise ValidationFailed(f"Backup file not found: {path}")

        resolved = path.resolve()
        roots = (self.backup_dir.resolve(), self.project_root.resolve())
        inside = any(resolved == root or root in resolved.parents for root in roots)
        if not inside and not allow_outside:
            raise ValidationFailed(
                f"Backup file is outside the backup directory: {resolved}",
                remediation=f"move it under {self.backup_dir} or pass --allow-outside",
            )
        return resolved

    def _checked(self, kind: BackupKind, path, allow_outside: bool):
        """Validated path, or the failed RestoreResult explaining why not."""
        operation = f"{kind.name}_RESTORE"
        try:
            resolved = self.validate_backup_path(path, allow_outside=allow_outside)
            verify_backup_file(resolved)
        except ValidationFailed as e:
            logger.error(f"❌ {e}")
            self._record(operation, "FAILED", str(e))
            return None, RestoreResult(kind, RestoreOutcome.FAILED, str(e))
        return resolved, None

    def _restore_failed(self, kind: BackupKind, message: str, path: Path) -> RestoreResult:
        logger.error(f"❌ {kind.value} restore failed: {message}")
        self._record(f"{kind.name}_RESTORE", "FAILED", f"{path} - {message}")
        return RestoreResult(kind, RestoreOutcome.FAILED, message, path)

    def _cancelled(self, kind: BackupKind, path: Path) -> RestoreResult:
        logger.info("Restore not confirmed; nothing changed")
        self._record(f"{kind.name}_RESTORE", "CANCELLED", str(path))
        return RestoreResult(kind, RestoreOutcome.CANCELLED, "Restore not confirmed", path)

    def restore_database(self, path, confirmed: bool = False, allow_outside: bool = False) -> RestoreResult:
        kind = BackupKind.DATABASE
        resolved, failure = self._checked(kind, path, allow_outside)
        if failure:
            return failure

        problem = self._service_ready("postgres")
        if problem:
            return self._restore_failed(kind, problem, resolved)
        if not confirmed:
            return self._cancelled(kind, resolved)

        try:
            if resolved.suffix == ".gz":
                with gzip.open(resolved, "rt", encoding="utf-8") as fh:
                    sql = fh.read()
            else:
                sql = resolved.read_text(encoding="utf-8")
        except (OSError, EOFError, UnicodeDecodeError) as e:
            return self._restore_failed(kind, f"Cannot read backup: {e}", resolved)

        user, db = self._db_credentials()
        security_logger.warning(f"Overwriting database {db} from {resolved}")
        result = self.compose.exec("postgres", "psql", "-U", user, db, input_text=sql, timeout=DUMP_TIMEOUT_SECONDS)
        if not result.ok:
            return self._restore_failed(kind, f"psql failed: {result.stderr.strip()}", resolved)

        logger.info(f"✅ Database restored from {resolved}")
        self._record(f"{kind.name}_RESTORE", "SUCCESS", str(resolved))
        return RestoreResult(kind, RestoreOutcome.RESTORED, "Database restored", resolved)

    def restore_redis(self, path, confirmed: bool = False, allow_outside: bool = False) -> RestoreResult:
        kind = BackupKind.REDIS
        resolved, failure = self._checked(kind, path, allow_outside)
        if failure:
            return failure

        if not self.compose.is_running("redis"):
            return self._restore_failed(kind, "redis container is not running", resolved)
        if not confirmed:
            return self._cancelled(kind, resolved)

        security_logger.warning(f"Overwriting Redis data from {resolved}")
        stop = self.compose.stop("redis")
        if not stop.ok:
            return self._restore_failed(kind, f"Could not stop redis: {stop.stderr.strip()}", resolved)

        containers = self.compose.container_ids("redis", include_stopped=True)
        if len(containers) != 1:
            self.compose.start("redis")
            return self._restore_failed(kind, f"Expected one redis container, found {len(containers)}", resolved)

        with tempfile.TemporaryDirectory() as tmp:
            dump = Path(tmp) / "dump.rdb"
            try:
                if resolved.suffix == ".gz":
                    with gzip.open(resolved, "rb") as src, open(dump, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                else:
                    shutil.copyfile(resolved, dump)
            except (OSError, EOFError) as e:
                self.compose.start("redis")
                return self._restore_failed(kind, f"Cannot decompress backup: {e}", resolved)

            copy = self.compose.executor.run("docker", ["cp", str(dump), f"{containers[0]}:{REDIS_DUMP}"], timeout=300)
            if not copy.ok:
                self.compose.start("redis")
                return self._restore_failed(kind, f"docker cp failed: {copy.stderr.strip()}", resolved)

        start = self.compose.start("redis")
        if not start.ok:
            return self._restore_failed(kind, f"Could not start redis: {start.stderr.strip()}", resolved)

        problem = self._service_ready("redis")
        if problem:
            return self._restore_failed(kind, f"Redis did not become ready after restore: {problem}", resolved)

        logger.info(f"✅ Redis data restored from {resolved}")
        self._record(f"{kind.name}_RESTORE", "SUCCESS", str(resolved))
        return RestoreResult(kind, RestoreOutcome.RESTORED, "Redis data restored", resolved)

    def restore_app_files(self, path, confirmed: bool = False, allow_outside: bool = False) -> RestoreResult:
        kind = BackupKind.APP_FILES
        resolved, failure = self._checked(kind, path, allow_outside)
        if failure:
            return failure

        try:
            with tarfile.open(resolved, "r:gz") as tar:
                members = tar.getmembers()
        except (OSError, EOFError, tarfile.TarError) as e:
            return self._restore_failed(kind, f"Not a valid tar.gz: {e}", resolved)

        unexpected = [m.name for m in members if m.name not in ENV_FILES or not m.isfile()]
        if unexpected:
            return self._restore_failed(kind, f"Archive holds unexpected entries: {', '.join(unexpected)}", resolved)

        logger.info(f"Backup contains: {', '.join(m.name for m in members)}")
        if not confirmed:
            return self._cancelled(kind, resolved)

        current = [name for name in ENV_FILES if (self.project_root / name).is_file()]
        if current:
            safety = self.backup_dir / f"pre-restore-{self._timestamp()}.tar.gz"
            try:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                with tarfile.open(safety, "w:gz") as tar:
                    for name in current:
                        tar.add(self.project_root / name, arcname=name)
                logger.info(f"Current .env files saved to {safety}")
            except (OSError, tarfile.TarError) as e:
                logger.warning(f"⚠️  Could not save current .env files: {e}")

        security_logger.warning(f"Overwriting env files from {resolved}")
        try:
            with tarfile.open(resolved, "r:gz") as tar:
                for member in members:
                    data = tar.extractfile(member).read()
                    target = self.project_root / member.name
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(data)
                    os.chmod(target, 0o600)
        except (OSError, EOFError, tarfile.TarError) as e:
            return self._restore_failed(kind, f"Extraction failed: {e}", resolved)

        logger.info("✅ Application files restored; restart services for changes to take effect")
        self._record(f"{kind.name}_RESTORE", "SUCCESS", str(resolved))
        return RestoreResult(
            kind, RestoreOutcome.RESTORED, "Files restored; run docker compose restart to apply", resolved,
        )

    # ============ RETENTION ============

    def list_backups(self) -> List[BackupEntry]:
        if not self.backup_dir.is_dir():
            return []

        entries = []
        for path in self.backup_dir.iterdir():
            if not path.is_file():
                continue
            kind = next((k for k in BackupKind if k.matches(path.name)), None)
            if kind is None:
                continue
            stat = path.stat()
            entries.append(BackupEntry(kind, path, stat.st_size, datetime.fromtimestamp(stat.st_mtime)))
        return sorted(entries, key=lambda e: e.modified, reverse=True)

    def clean_old_backups(
        self,
        days: int = DEFAULT_RETENTION_DAYS,
        confirmation_token: Optional[str] = None,
    ) -> CleanupResult:
        """Delete backups older than ``days``; requires the literal token DELETE."""
        if days < 0:
            raise ValueError("days must not be negative")
        if not self.backup_dir.is_dir():
            return CleanupResult(CleanupOutcome.FAILED, message=f"Backup directory does not exist: {self.backup_dir}")

        cutoff = self.now() - timedelta(days=days)
        candidates = [e for e in self.list_backups() if e.modified < cutoff]
        if not candidates:
            logger.info(f"No backups older than {days} days")
            return CleanupResult(CleanupOutcome.NOTHING_TO_DELETE, message=f"No backups older than {days} days")

        for entry in candidates:
            logger.info(f"  - {entry.path.name} ({entry.kind.value})")

        if confirmation_token != CLEANUP_PHRASE:
            logger.info("Cleanup not confirmed; nothing deleted")
            self._record("CLEANUP", "CANCELLED", f"{len(candidates)} file(s) kept")
            return CleanupResult(CleanupOutcome.CANCELLED, candidates=candidates, message="Cleanup not confirmed")

        result = CleanupResult(CleanupOutcome.DELETED, candidates=candidates)
        for entry in candidates:
            try:
                entry.path.unlink()
                result.deleted.append(entry.path)
                logger.info(f"Deleted: {entry.path.name}")
            except OSError as e:
                logger.error(f"❌ Failed to delete {entry.path.name}: {e}")
                result.failed.append(entry.path)

        if result.failed:
            result.outcome = CleanupOutcome.FAILED
            result.message = f"{len(result.deleted)} deleted, {len(result.failed)} failed"
            self._record("CLEANUP", "PARTIAL", result.message)
        else:
            result.message = f"{len(result.deleted)} file(s) older than {days} days deleted"
            self._record("CLEANUP", "SUCCESS", result.message)
        return result
