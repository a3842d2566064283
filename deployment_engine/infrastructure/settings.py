# deployment_engine/infrastructure/settings.py

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from deployment_engine.core.models import Deployment
from deployment_engine.core.validation import UNSET, build_deployment


class DeploymentSettings(BaseSettings):
    """Deployment configuration from environment variables and the root .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Deployment identity
    veriscope_service_host: str = UNSET
    veriscope_common_name: str = UNSET
    veriscope_target: str = UNSET
    app_env: Optional[str] = None

    # Layout
    project_root: Path = Path(".")
    compose_file: str = "docker-compose.yml"
    backup_dir: Path = Path("backups")

    # Blockchain client
    rpc_url: str = "http://localhost:8545"
    shyft_chainspec_url: Optional[str] = None

    # Host-side database probe
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # Timeouts
    readiness_timeout_seconds: float = 120
    readiness_interval_seconds: float = 2
    probe_timeout_seconds: float = 10
    command_timeout_seconds: float = 600

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def to_deployment(self) -> Deployment:
        """Build the immutable Deployment. Raises ConfigurationError."""
        return build_deployment(
            service_host=self.veriscope_service_host,
            common_name=self.veriscope_common_name,
            network_target=self.veriscope_target,
            app_env=self.app_env,
            compose_file=self.compose_file,
        )


def load_settings(project_root: Optional[Path] = None) -> DeploymentSettings:
    """Load settings, reading the .env that lives in the project root."""
    if project_root is None:
        return DeploymentSettings()
    root = Path(project_root)
    return DeploymentSettings(_env_file=root / ".env", project_root=root)
