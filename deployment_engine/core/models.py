# deployment_engine/core/models.py
"""Core domain models for the deployment engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Tuple


# -------------------------
# DEPLOYMENT
# -------------------------

class NetworkTarget(Enum):
    """Known chain targets. Anything else is a configuration error."""

    VERISCOPE_TESTNET = "veriscope_testnet"
    FED_TESTNET = "fed_testnet"
    FED_MAINNET = "fed_mainnet"


class DeploymentMode(Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass(frozen=True)
class Deployment:
    """One target environment, built once at startup and passed everywhere."""

    service_host: str
    common_name: str
    network_target: NetworkTarget
    mode: DeploymentMode

    @property
    def is_development(self) -> bool:
        return self.mode == DeploymentMode.DEVELOPMENT

    @property
    def app_url(self) -> str:
        if self.service_host in ("localhost", "127.0.0.1"):
            return f"http://{self.service_host}"
        return f"https://{self.service_host}"


# -------------------------
# COMMANDS
# -------------------------

class CommandFailureKind(Enum):
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command. Never raised, always inspected."""

    command: Tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def failure_kind(self) -> Optional[CommandFailureKind]:
        if self.timed_out:
            return CommandFailureKind.TIMEOUT
        if self.exit_code == 127:
            return CommandFailureKind.NOT_FOUND
        if self.exit_code != 0:
            return CommandFailureKind.NON_ZERO_EXIT
        return None


# -------------------------
# SERVICES
# -------------------------

Probe = Callable[[], bool]


@dataclass(frozen=True)
class ServiceDescriptor:
    name: str
    probe: Probe
    depends_on: Tuple[str, ...] = ()
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.name


class ServiceState(Enum):
    UP = "up"
    DOWN = "down"


# -------------------------
# CREDENTIALS
# -------------------------

class StrengthClass(Enum):
    WEAK = "weak"
    ACCEPTABLE = "acceptable"
    STRONG = "strong"


@dataclass(frozen=True)
class CredentialLocation:
    """A key inside a named credential store (root, node, dashboard)."""

    store: str
    key: str

    def __str__(self):
        return f"{self.store}:{self.key}"


@dataclass(frozen=True)
class Credential:
    key: str
    value: str
    scope: Tuple[CredentialLocation, ...] = ()


# -------------------------
# RESOURCES
# -------------------------

class ResourceClassification(Enum):
    RESETTABLE = "resettable"
    PRESERVED = "preserved"


@dataclass(frozen=True)
class PersistentResource:
    name: str
    classification: ResourceClassification
    owner: str


# -------------------------
# CERTIFICATES
# -------------------------

class CertificateState(Enum):
    ABSENT = "absent"
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CertificateRecord:
    """Derived from the certificate authority's store; never cached."""

    domain: str
    cert_path: str
    key_path: str
    expires_at: Optional[datetime] = None


# -------------------------
# SYNC STATUS
# -------------------------

class SyncState(Enum):
    UNKNOWN = "unknown"
    SYNCING = "syncing"
    SYNCED = "synced"
    UNREACHABLE = "unreachable"


@dataclass
class SyncStatus:
    current_block: Optional[int] = None
    highest_block: Optional[int] = None
    peer_count: Optional[int] = None
    state: SyncState = SyncState.UNKNOWN
    progress_percent: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def isolated(self) -> bool:
        return self.peer_count == 0


# -------------------------
# TRI-STATE OUTCOME
# -------------------------

class Outcome(Enum):
    """What every component reports back to the orchestrator."""

    SUCCESS = "success"
    RECOVERABLE = "recoverable"
    FATAL = "fatal"
