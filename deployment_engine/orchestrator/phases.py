# deployment_engine/orchestrator/phases.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from deployment_engine.core.models import Outcome


@dataclass
class ActionResult:
    """What a phase action reports back."""

    outcome: Outcome
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "ActionResult":
        return cls(Outcome.SUCCESS, message)

    @classmethod
    def recoverable(cls, message: str) -> "ActionResult":
        return cls(Outcome.RECOVERABLE, message)

    @classmethod
    def fatal(cls, message: str) -> "ActionResult":
        return cls(Outcome.FATAL, message)


@dataclass(frozen=True)
class InstallPhase:
    ordinal: int
    name: str
    description: str
    required: bool
    action: Callable[[], ActionResult]


# Fixed by design: (ordinal, name, description, required)
PHASE_TABLE = (
    (1, "verify-dependencies", "Verify host dependencies", True),
    (2, "generate-credentials", "Generate database credentials", True),
    (3, "build-images", "Build container images", True),
    (4, "generate-keypair", "Generate Trust Anchor keypair", True),
    (5, "setup-certificate", "Obtain TLS certificate", False),
    (6, "configure-proxy", "Configure reverse proxy", True),
    (7, "reset-volumes", "Reset resettable volumes", True),
    (8, "start-services", "Start services", True),
    (9, "await-readiness", "Wait for services to be ready", True),
    (10, "configure-chain", "Configure chain for network target", True),
    (11, "setup-application", "Set up Laravel application", True),
    (12, "install-optional", "Install optional components", False),
    (13, "finalize", "Create admin user", False),
)


class PhaseStatus(Enum):
    PASSED = "passed"
    WARNED = "warned"
    FAILED = "failed"
    NOT_RUN = "not_run"


@dataclass
class PhaseResult:
    ordinal: int
    name: str
    required: bool
    status: PhaseStatus
    message: str = ""
    remediation: Optional[str] = None


@dataclass
class InstallReport:
    results: List[PhaseResult] = field(default_factory=list)
    halted_at: Optional[PhaseResult] = None
    health: Optional[object] = None

    @property
    def succeeded(self) -> bool:
        return self.halted_at is None

    @property
    def warnings(self) -> List[PhaseResult]:
        return [r for r in self.results if r.status == PhaseStatus.WARNED]

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
