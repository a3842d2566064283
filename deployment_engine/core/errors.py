# deployment_engine/core/errors.py
from enum import Enum


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration_error"
    DEPENDENCY_UNREADY = "dependency_unready"
    VALIDATION_FAILED = "validation_failed"
    EXTERNAL_TOOL_FAILURE = "external_tool_failure"
    VERIFICATION_FAILED = "verification_failed"
    ENTROPY_UNAVAILABLE = "entropy_unavailable"


# -----------------------------
# Base Errors
# -----------------------------

class DeploymentEngineError(Exception):
    """Base class for all deployment engine errors."""
    kind: ErrorKind = ErrorKind.EXTERNAL_TOOL_FAILURE

    def __init__(self, message: str, remediation: str = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def __str__(self):
        if self.remediation:
            return f"{self.message} (remediation: {self.remediation})"
        return self.message


# -----------------------------
# Configuration Errors
# -----------------------------

class ConfigurationError(DeploymentEngineError):
    """Invalid or missing required deployment attribute. Never retried."""
    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, problems=None, remediation: str = None):
        super().__init__(message, remediation)
        self.problems = list(problems or [])


# -----------------------------
# Runtime Errors
# -----------------------------

class DependencyUnready(DeploymentEngineError):
    """A readiness gate timed out."""
    kind = ErrorKind.DEPENDENCY_UNREADY


class ValidationFailed(DeploymentEngineError):
    """Credential, domain or document failed a contract check before any write."""
    kind = ErrorKind.VALIDATION_FAILED


class ExternalToolFailure(DeploymentEngineError):
    """An opaque external tool exited non-zero or timed out."""
    kind = ErrorKind.EXTERNAL_TOOL_FAILURE

    def __init__(self, message: str, result=None, remediation: str = None):
        super().__init__(message, remediation)
        self.result = result

    def __str__(self):
        text = super().__str__()
        if self.result is not None and self.result.stderr:
            text = f"{text}\n{self.result.stderr.strip()}"
        return text


class VerificationFailed(DeploymentEngineError):
    """A post-write check did not match what was written."""
    kind = ErrorKind.VERIFICATION_FAILED


class EntropyUnavailable(DeploymentEngineError):
    """No secure random source could produce a secret."""
    kind = ErrorKind.ENTROPY_UNAVAILABLE


# -----------------------------
# Adapter Errors
# -----------------------------

class CredentialStoreError(DeploymentEngineError):
    """A key=value configuration file could not be read or written."""
    kind = ErrorKind.VALIDATION_FAILED


class RpcError(DeploymentEngineError):
    """JSON-RPC call failed at transport or protocol level."""
    kind = ErrorKind.EXTERNAL_TOOL_FAILURE


class DockerUnavailable(DeploymentEngineError):
    """The Docker daemon could not be reached through the SDK."""
    kind = ErrorKind.EXTERNAL_TOOL_FAILURE
