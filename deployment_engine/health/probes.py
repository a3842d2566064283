# deployment_engine/health/probes.py
"""Readiness probes and the static service topology."""

import logging
from typing import List

from deployment_engine.core.errors import RpcError
from deployment_engine.core.models import ServiceDescriptor

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 10


class ComposeProbes:
    """Side-effect-free checks run inside the compose services."""

    def __init__(self, compose, rpc, timeout: float = PROBE_TIMEOUT, db_user: str = "trustanchor"):
        self.compose = compose
        self.rpc = rpc
        self.timeout = timeout
        self.db_user = db_user

    def postgres(self) -> bool:
        return self.compose.exec("postgres", "pg_isready", "-U", self.db_user, timeout=self.timeout).ok

    def redis(self) -> bool:
        result = self.compose.exec("redis", "redis-cli", "ping", timeout=self.timeout)
        return result.ok and "PONG" in result.stdout

    def nethermind(self) -> bool:
        try:
            return bool(self.rpc.call("web3_clientVersion"))
        except RpcError as e:
            logger.debug(f"nethermind probe: {e}")
            return False

    def app(self) -> bool:
        if not self.compose.is_running("app"):
            return False
        return self.compose.exec("app", "php", "artisan", "--version", timeout=self.timeout).ok

    def ta_node(self) -> bool:
        if not self.compose.is_running("ta-node"):
            return False
        return self.compose.exec("ta-node", "sh", "-c", "pgrep -f node", timeout=self.timeout).ok

    def nginx(self) -> bool:
        return self.compose.exec("nginx", "nginx", "-t", timeout=self.timeout).ok


def build_topology(probes: ComposeProbes) -> List[ServiceDescriptor]:
    """Services in dependency order."""
    return [
        ServiceDescriptor("postgres", probes.postgres, display_name="PostgreSQL"),
        ServiceDescriptor("redis", probes.redis, display_name="Redis"),
        ServiceDescriptor("nethermind", probes.nethermind, display_name="Nethermind"),
        ServiceDescriptor("app", probes.app, depends_on=("postgres", "redis"), display_name="Laravel app"),
        ServiceDescriptor("ta-node", probes.ta_node, depends_on=("nethermind", "redis"), display_name="TA node"),
        ServiceDescriptor("nginx", probes.nginx, depends_on=("app",), display_name="Nginx"),
    ]
