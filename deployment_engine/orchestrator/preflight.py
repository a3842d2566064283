# deployment_engine/orchestrator/preflight.py
import logging
import shutil
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List

logger = logging.getLogger(__name__)

REQUIRED_PORTS = (80, 443, 5432, 6379, 8545)
MIN_DISK_GB = 20
RECOMMENDED_DISK_GB = 50
GB = 1024 ** 3


@dataclass
class CheckResult:
    name: str
    passed: bool
    required: bool
    message: str = ""


@dataclass
class PreflightReport:
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def blocking_failures(self) -> List[CheckResult]:
        return [c for c in self.checks if c.required and not c.passed]

    @property
    def warnings(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.required and not c.passed]

    @property
    def ok(self) -> bool:
        return not self.blocking_failures


def port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    try:
        with socket.create_connection((host, port), timeout=0.5):
            return True
    except OSError:
        return False


def free_disk_bytes(path: Path) -> int:
    return shutil.disk_usage(path).free


class PreflightChecker:
    """Host prerequisites: Docker tooling is required, ports and disk only warn."""

    def __init__(
        self,
        executor,
        project_root: Path = Path("."),
        ports=REQUIRED_PORTS,
        port_check: Callable[[int], bool] = port_in_use,
        disk_check: Callable[[Path], int] = free_disk_bytes,
    ):
        self.executor = executor
        self.project_root = Path(project_root)
        self.ports = tuple(ports)
        self.port_check = port_check
        self.disk_check = disk_check

    def run(self) -> PreflightReport:
        report = PreflightReport()

        docker = self.executor.run("docker", ["--version"], timeout=30)
        report.checks.append(CheckResult("docker", docker.ok, True,
                                         docker.stdout.strip() or "docker is not installed"))

        compose = self.executor.run("docker", ["compose", "version"], timeout=30)
        report.checks.append(CheckResult("docker-compose", compose.ok, True,
                                         compose.stdout.strip() or "docker compose plugin is not installed"))

        daemon = self.executor.run("docker", ["info"], timeout=60)
        report.checks.append(CheckResult("docker-daemon", daemon.ok, True,
                                         "running" if daemon.ok else "docker daemon is not reachable"))

        busy = [p for p in self.ports if self.port_check(p)]
        report.checks.append(CheckResult(
            "ports", not busy, False,
            f"ports already in use: {', '.join(map(str, busy))}" if busy else "all ports available",
        ))

        try:
            free_gb = self.disk_check(self.project_root) / GB
        except OSError as e:
            report.checks.append(CheckResult("disk", False, False, f"cannot determine free space: {e}"))
        else:
            if free_gb < MIN_DISK_GB:
                message = f"{free_gb:.1f}GB free, minimum {MIN_DISK_GB}GB"
            elif free_gb < RECOMMENDED_DISK_GB:
                message = f"{free_gb:.1f}GB free, {RECOMMENDED_DISK_GB}GB recommended"
            else:
                message = f"{free_gb:.1f}GB free"
            report.checks.append(CheckResult("disk", free_gb >= RECOMMENDED_DISK_GB, False, message))

        for check in report.checks:
            if check.passed:
                logger.info(f"✅ {check.name}: {check.message}")
            elif check.required:
                logger.error(f"❌ {check.name}: {check.message}")
            else:
                logger.warning(f"⚠️  {check.name}: {check.message}")
        return report
