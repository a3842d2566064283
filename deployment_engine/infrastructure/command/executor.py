# deployment_engine/infrastructure/command/executor.py
"""
Command Executor - runs external tools with a timeout.

Never raises on a non-zero exit. A timeout is reported separately from a
non-zero exit so callers can tell "not started yet" from "rejected".
"""

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from deployment_engine.core.models import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 600


class CommandExecutor:

    def __init__(self, cwd: Optional[Path] = None, default_timeout: float = DEFAULT_TIMEOUT):
        self.cwd = Path(cwd) if cwd else None
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        argv = (command, *[str(a) for a in args])
        timeout = timeout if timeout is not None else self.default_timeout

        logger.debug(f"[exec] {' '.join(argv)} (timeout={timeout}s)")

        try:
            completed = subprocess.run(
                argv,
                cwd=self.cwd,
                input=input_text,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"[exec] ⏱️ Timed out after {timeout}s: {argv[0]} {argv[1] if len(argv) > 1 else ''}")
            return CommandResult(
                command=argv,
                exit_code=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                timed_out=True,
            )
        except FileNotFoundError as e:
            return CommandResult(command=argv, exit_code=127, stderr=str(e))
        except PermissionError as e:
            return CommandResult(command=argv, exit_code=126, stderr=str(e))

        if completed.returncode != 0:
            logger.debug(f"[exec] exit {completed.returncode}: {completed.stderr.strip()[:500]}")

        return CommandResult(
            command=argv,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def run_interactive(self, command: str, args: Sequence[str] = ()) -> CommandResult:
        """Run attached to the terminal; only the exit code is captured."""
        argv = (command, *[str(a) for a in args])
        try:
            completed = subprocess.run(argv, cwd=self.cwd)
        except FileNotFoundError as e:
            return CommandResult(command=argv, exit_code=127, stderr=str(e))
        return CommandResult(command=argv, exit_code=completed.returncode)


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
