# deployment_engine/credentials/strength.py
import logging

from deployment_engine.core.models import DeploymentMode, StrengthClass

logger = logging.getLogger(__name__)

PRODUCTION_MIN_LENGTH = 20
DEVELOPMENT_MIN_LENGTH = 12

# Known default and placeholder passwords. Always weak, whatever the length.
DENYLIST = frozenset({
    "trustanchor_dev",
    "password",
    "Password123",
    "admin",
    "trustanchor",
    "postgres",
    "root",
    "123456",
    "password123",
    "admin123",
    "unset",
    "changeme",
    "secret",
    "your_secure_password_goes_here",
})


def classify_strength(value, mode: DeploymentMode = DeploymentMode.PRODUCTION) -> StrengthClass:
    """
    Classify a credential value for the given deployment mode.

    Production requires at least 20 characters. Development accepts 12 or
    more as ``ACCEPTABLE`` (logged as a warning) and still grades 20 or
    more as ``STRONG``.
    """
    if not value or value in DENYLIST:
        return StrengthClass.WEAK

    if len(value) >= PRODUCTION_MIN_LENGTH:
        return StrengthClass.STRONG

    if mode == DeploymentMode.DEVELOPMENT and len(value) >= DEVELOPMENT_MIN_LENGTH:
        logger.warning(
            f"Credential is {len(value)} characters; acceptable for development, "
            f"production requires {PRODUCTION_MIN_LENGTH}+"
        )
        return StrengthClass.ACCEPTABLE

    return StrengthClass.WEAK
