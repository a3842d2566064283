# deployment_engine/infrastructure/command/compose.py
import json
import logging
from typing import Iterable, List, Optional

from deployment_engine.core.models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "veriscope"


class ComposeClient:
    """Thin wrapper that turns compose verbs into Command Executor calls."""

    def __init__(self, executor, compose_file: str = "docker-compose.yml"):
        self.executor = executor
        self.compose_file = compose_file

    def _compose(self, *args, timeout: Optional[float] = None, input_text: Optional[str] = None) -> CommandResult:
        return self.executor.run(
            "docker", ["compose", "-f", self.compose_file, *args], timeout=timeout, input_text=input_text,
        )

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def build(self, services: Iterable[str] = ()) -> CommandResult:
        return self._compose("build", *services)

    def up(self, services: Iterable[str] = (), no_deps: bool = False, profile: Optional[str] = None) -> CommandResult:
        args = []
        if profile:
            args += ["--profile", profile]
        args += ["up", "-d"]
        if no_deps:
            args.append("--no-deps")
        return self._compose(*args, *services)

    def down(self, remove_orphans: bool = False) -> CommandResult:
        args = ["down"]
        if remove_orphans:
            args.append("--remove-orphans")
        return self._compose(*args)

    def restart(self, service: str) -> CommandResult:
        return self._compose("restart", service)

    def stop(self, service: str) -> CommandResult:
        return self._compose("stop", service)

    def start(self, service: str) -> CommandResult:
        return self._compose("start", service)

    # -------------------------
    # ONE-OFF COMMANDS
    # -------------------------

    def exec(
        self,
        service: str,
        *command: str,
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        return self._compose("exec", "-T", service, *command, timeout=timeout, input_text=input_text)

    def exec_interactive(self, service: str, *command: str) -> CommandResult:
        return self.executor.run_interactive("docker", ["compose", "-f", self.compose_file, "exec", service, *command])

    def run(
        self,
        service: str,
        *command: str,
        entrypoint: Optional[str] = None,
        no_deps: bool = False,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        args = ["run", "--rm"]
        if no_deps:
            args.append("--no-deps")
        if entrypoint:
            args += ["--entrypoint", entrypoint]
        args += ["-T", service, *command]
        return self._compose(*args, timeout=timeout)

    # -------------------------
    # STATUS
    # -------------------------

    def is_running(self, service: str) -> bool:
        result = self._compose("ps", service, timeout=30)
        if not result.ok:
            return False
        return "Up" in result.stdout or "running" in result.stdout

    def container_ids(self, service: str, include_stopped: bool = False) -> List[str]:
        args = ["ps", "-aq" if include_stopped else "-q", service]
        result = self._compose(*args, timeout=30)
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def project_name(self) -> str:
        """Compose project name, used as the prefix for volume names."""
        result = self._compose("config", "--format", "json", timeout=30)
        if result.ok:
            try:
                name = json.loads(result.stdout).get("name")
                if name:
                    return name
            except (ValueError, AttributeError):
                logger.debug("Could not parse compose config output, using default project name")
        return DEFAULT_PROJECT_NAME
