# deployment_engine/infrastructure/docker/volumes.py
import logging
from dataclasses import dataclass
from typing import List, Optional

import docker
import requests

from deployment_engine.core.errors import DockerUnavailable

logger = logging.getLogger(__name__)

# NotFound and APIError derive from DockerException; transport failures surface as requests errors
DOCKER_ERRORS = (docker.errors.DockerException, requests.exceptions.RequestException)

DAEMON_REMEDIATION = "start the Docker daemon (systemctl start docker) and check DOCKER_HOST"


@dataclass(frozen=True)
class VolumeRemoval:
    name: str
    removed: bool
    missing: bool = False
    error: Optional[str] = None


class DockerVolumeBackend:
    """Named Docker volumes through the Docker SDK."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DOCKER_ERRORS as e:
                raise DockerUnavailable(f"Cannot connect to Docker daemon: {e}", DAEMON_REMEDIATION) from e
            logger.info("✅ Connected to Docker daemon")
        return self._client

    def list_names(self, name_filter: Optional[str] = None) -> List[str]:
        """
        Raises:
            DockerUnavailable: if the daemon cannot be reached
        """
        filters = {"name": name_filter} if name_filter else None
        try:
            volumes = self.client.volumes.list(filters=filters)
        except DOCKER_ERRORS as e:
            raise DockerUnavailable(f"Failed to list volumes: {e}", DAEMON_REMEDIATION) from e
        return sorted(v.name for v in volumes)

    def remove(self, name: str) -> VolumeRemoval:
        try:
            volume = self.client.volumes.get(name)
        except DockerUnavailable as e:
            logger.error(f"❌ Cannot remove volume {name}: {e}")
            return VolumeRemoval(name=name, removed=False, error=str(e))
        except docker.errors.NotFound:
            return VolumeRemoval(name=name, removed=False, missing=True)
        except DOCKER_ERRORS as e:
            logger.error(f"❌ Cannot look up volume {name}: {e}")
            return VolumeRemoval(name=name, removed=False, error=str(e))

        try:
            volume.remove()
        except docker.errors.NotFound:
            return VolumeRemoval(name=name, removed=False, missing=True)
        except DOCKER_ERRORS as e:
            # Typically "volume is in use"
            logger.error(f"Failed to remove volume {name}: {e}")
            return VolumeRemoval(name=name, removed=False, error=str(e))

        logger.info(f"✅ Removed volume: {name}")
        return VolumeRemoval(name=name, removed=True)
