# deployment_engine/core/validation.py
import re
from typing import List, Optional

from deployment_engine.core.errors import ConfigurationError
from deployment_engine.core.models import Deployment, DeploymentMode, NetworkTarget

UNSET = "unset"

_DEV_HOST_PATTERN = re.compile(r"^(localhost|127\.0\.0\.1|.*\.local|.*\.test)$", re.IGNORECASE)
_DEV_APP_ENVS = ("local", "development")


def parse_network_target(value: str) -> NetworkTarget:
    try:
        return NetworkTarget(value)
    except ValueError:
        known = ", ".join(t.value for t in NetworkTarget)
        raise ConfigurationError(
            f"Unknown network target '{value}'",
            problems=[f"VERISCOPE_TARGET must be one of: {known}"],
        )


def derive_mode(host: str, app_env: Optional[str] = None, compose_file: Optional[str] = None) -> DeploymentMode:
    if compose_file and "dev" in compose_file:
        return DeploymentMode.DEVELOPMENT
    if app_env and app_env.lower() in _DEV_APP_ENVS:
        return DeploymentMode.DEVELOPMENT
    if host and _DEV_HOST_PATTERN.match(host):
        return DeploymentMode.DEVELOPMENT
    return DeploymentMode.PRODUCTION


def _missing(value: Optional[str]) -> bool:
    return value is None or not value.strip() or value.strip() == UNSET


def build_deployment(
    service_host: Optional[str],
    common_name: Optional[str],
    network_target: Optional[str],
    app_env: Optional[str] = None,
    compose_file: Optional[str] = None,
) -> Deployment:
    """
    Validate raw attributes and build the immutable Deployment.

    Every problem is collected so the operator sees them all at once.

    Raises:
        ConfigurationError: if any required attribute is missing or invalid
    """
    problems: List[str] = []

    # -------------------------
    # Required attributes
    # -------------------------
    if _missing(service_host):
        problems.append("VERISCOPE_SERVICE_HOST must be set")
    if _missing(common_name):
        problems.append("VERISCOPE_COMMON_NAME must be set")

    # -------------------------
    # Network target
    # -------------------------
    target = None
    if _missing(network_target):
        problems.append("VERISCOPE_TARGET must be set")
    else:
        try:
            target = parse_network_target(network_target.strip())
        except ConfigurationError as e:
            problems.extend(e.problems)

    if problems:
        raise ConfigurationError(
            "Invalid deployment configuration: " + "; ".join(problems),
            problems=problems,
            remediation="set the listed variables in the root .env file",
        )

    host = service_host.strip()
    return Deployment(
        service_host=host,
        common_name=common_name.strip(),
        network_target=target,
        mode=derive_mode(host, app_env, compose_file),
    )
