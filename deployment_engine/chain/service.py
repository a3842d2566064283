# deployment_engine/chain/service.py
"""
Chain configuration for the selected network target.

Covers Nethermind ethstats settings, the TA node configuration file,
contract artifacts, static peers and the chainspec. Network input is
treated defensively: an empty or malformed answer never replaces a
file that is already on disk.
"""

import io
import json
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import requests
from dotenv import dotenv_values

from deployment_engine.chain.ethstats import EthstatsClient
from deployment_engine.chain.networks import NetworkProfile, profile_for
from deployment_engine.core.errors import CredentialStoreError, RpcError
from deployment_engine.core.models import Deployment, Outcome
from deployment_engine.infrastructure.envfile.store import CredentialStores

logger = logging.getLogger(__name__)

CHAINSPEC_FILE = "shyftchainspec.json"
STATIC_NODES_FILE = "static-nodes.json"
NODE_ENV_TEMPLATE = "ta-node-env"
MIN_CHAINSPEC_BYTES = 5 * 1024

# Host-install URLs in the template, rewritten to compose service names
NODE_ENV_REWRITES = (
    ("http://localhost:8545", "http://nethermind:8545"),
    ("ws://localhost:8545", "ws://nethermind:8545"),
    ("http://localhost:8000", "http://nginx:80"),
    ("redis://127.0.0.1:6379", "redis://redis:6379"),
    ("/opt/veriscope/veriscope_ta_node/artifacts/", "/app/artifacts/"),
)

PEER_CACHE_FILES = (
    "/data/db/discoveryNodes/SimpleFileDb.db",
    "/data/db/peers/SimpleFileDb.db",
)


@dataclass
class ChainResult:
    outcome: Outcome
    message: str
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS


@dataclass
class StaticNodesResult:
    outcome: Outcome
    enodes: List[str] = field(default_factory=list)
    updated: bool = False
    contact: Optional[str] = None
    restarted: bool = False


def rewrite_node_env(text: str) -> str:
    for old, new in NODE_ENV_REWRITES:
        text = text.replace(old, new)
    return text


class ChainConfigurator:

    def __init__(
        self,
        deployment: Deployment,
        project_root: Path,
        stores: CredentialStores,
        compose,
        rpc=None,
        ethstats: Optional[EthstatsClient] = None,
        chainspec_url: Optional[str] = None,
        http=requests,
    ):
        self.deployment = deployment
        self.project_root = Path(project_root)
        self.stores = stores
        self.compose = compose
        self.rpc = rpc
        self.ethstats = ethstats or EthstatsClient()
        self.chainspec_url = chainspec_url
        self.http = http

    @property
    def profile(self) -> NetworkProfile:
        return profile_for(self.deployment.network_target)

    @property
    def chain_dir(self) -> Path:
        return self.project_root / "chains" / self.deployment.network_target.value

    @property
    def nethermind_dir(self) -> Path:
        return self.project_root / "nethermind"

    # -------------------------
    # NETHERMIND
    # -------------------------

    def configure_nethermind(self) -> ChainResult:
        profile = self.profile
        values = {
            "NETHERMIND_ETHSTATS_SERVER": profile.ethstats_server,
            "NETHERMIND_ETHSTATS_SECRET": profile.ethstats_secret,
            "NETHERMIND_ETHSTATS_ENABLED": "true",
        }
        self.stores[CredentialStores.ROOT].set_many(values, create=True)
        logger.info(f"Nethermind ethstats configured for {profile.target.value}: {profile.ethstats_server}")
        return ChainResult(Outcome.SUCCESS, "Nethermind configured", details={"server": profile.ethstats_server})

    # -------------------------
    # TA NODE CONFIGURATION
    # -------------------------

    def ensure_node_env(self) -> ChainResult:
        """
        Create the TA node .env from the network template, or fill in keys it lacks.

        Existing keys are never overwritten, so generated secrets survive re-runs.
        """
        node = self.stores[CredentialStores.NODE]
        template_path = self.chain_dir / NODE_ENV_TEMPLATE

        if node.path.is_dir():
            # A bind mount of a missing file leaves a directory behind
            logger.warning(f"{node.path} is a directory, removing")
            shutil.rmtree(node.path)

        if not template_path.is_file():
            if node.exists():
                return ChainResult(Outcome.SUCCESS, "TA node configuration present (no template to merge)")
            return ChainResult(Outcome.FATAL, f"No {NODE_ENV_TEMPLATE} template found in {self.chain_dir}")

        template_text = rewrite_node_env(template_path.read_text(encoding="utf-8"))

        if not node.exists() or node.path.stat().st_size == 0:
            node.path.parent.mkdir(parents=True, exist_ok=True)
            node.path.write_text(template_text, encoding="utf-8")
            logger.info(f"Created {node.path} from {template_path}")
            return ChainResult(Outcome.SUCCESS, "TA node configuration created")

        template = {k: v or "" for k, v in dotenv_values(stream=io.StringIO(template_text), interpolate=False).items()}
        current = node.read_all()
        missing = {k: v for k, v in template.items() if k not in current}
        if missing:
            node.set_many(missing)
            logger.info(f"Added {len(missing)} missing keys to {node.path}")
        return ChainResult(Outcome.SUCCESS, "TA node configuration up to date", details={"added": ",".join(missing)})

    def copy_artifacts(self) -> ChainResult:
        source = self.chain_dir / "artifacts"
        if not source.is_dir():
            logger.warning(f"No artifacts directory found in {self.chain_dir}")
            return ChainResult(Outcome.RECOVERABLE, "No artifacts to copy")

        volume = f"{self.compose.project_name()}_artifacts"
        executor = self.compose.executor
        executor.run("docker", ["volume", "create", volume], timeout=60)
        result = executor.run("docker", [
            "run", "--rm",
            "-v", f"{self.chain_dir.resolve()}:/source:ro",
            "-v", f"{volume}:/target",
            "alpine", "sh", "-c", "rm -rf /target/* && cp -r /source/artifacts/. /target/",
        ], timeout=300)
        if not result.ok:
            return ChainResult(Outcome.FATAL, f"Copying artifacts into {volume} failed: {result.stderr.strip()}")

        logger.info(f"✅ Artifacts copied into {volume}")
        return ChainResult(Outcome.SUCCESS, f"Artifacts copied into {volume}")

    def setup_chain_config(self) -> ChainResult:
        if not self.chain_dir.is_dir():
            return ChainResult(Outcome.FATAL, f"Chain directory not found: {self.chain_dir}")

        try:
            self.configure_nethermind()
            artifacts = self.copy_artifacts()
            if artifacts.outcome == Outcome.FATAL:
                return artifacts
            node_env = self.ensure_node_env()
            if node_env.outcome == Outcome.FATAL:
                return node_env
        except CredentialStoreError as e:
            return ChainResult(Outcome.FATAL, str(e))

        if self.nethermind_dir.is_dir():
            for name in (CHAINSPEC_FILE, STATIC_NODES_FILE):
                source = self.chain_dir / name
                if source.is_file():
                    shutil.copy2(source, self.nethermind_dir / name)
                    logger.info(f"Copied {name} to {self.nethermind_dir}")

        return ChainResult(Outcome.SUCCESS, f"Chain configured for {self.deployment.network_target.value}")

    # -------------------------
    # STATIC NODES
    # -------------------------

    def refresh_static_nodes(self, restart: bool = False) -> StaticNodesResult:
        result = StaticNodesResult(Outcome.SUCCESS)
        endpoint = self.profile.enodes_endpoint
        logger.info(f"Querying ethstats at {endpoint}")

        result.enodes = self.ethstats.fetch_enodes(endpoint)
        static_nodes = self.chain_dir / STATIC_NODES_FILE
        if result.enodes:
            static_nodes.parent.mkdir(parents=True, exist_ok=True)
            static_nodes.write_text(json.dumps(result.enodes, indent=2) + "\n", encoding="utf-8")
            result.updated = True
            logger.info(f"✅ Updated {static_nodes} with {len(result.enodes)} nodes")
        else:
            logger.warning(f"No static nodes retrieved; keeping existing {static_nodes.name} unchanged")
            result.outcome = Outcome.RECOVERABLE

        if not self.compose.is_running("nethermind"):
            logger.warning("Nethermind not running; start services and re-run to record this node's enode")
            return result

        result.contact = self._own_enode()
        if result.contact:
            self.stores[CredentialStores.ROOT].set("NETHERMIND_ETHSTATS_CONTACT", result.contact, create=True)
            logger.info("Updated NETHERMIND_ETHSTATS_CONTACT")

        if restart:
            result.restarted = self._restart_with_clean_peers()
        return result

    def _own_enode(self) -> Optional[str]:
        if self.rpc is None:
            return None
        try:
            info = self.rpc.call("admin_nodeInfo")
        except RpcError as e:
            logger.warning(f"Could not retrieve this node's enode: {e}")
            return None
        enode = info.get("enode") if isinstance(info, dict) else None
        return enode if isinstance(enode, str) and enode.startswith("enode://") else None

    def _restart_with_clean_peers(self) -> bool:
        self.compose.stop("nethermind")
        volume = f"{self.compose.project_name()}_nethermind_data"
        clear = self.compose.executor.run("docker", [
            "run", "--rm", "-v", f"{volume}:/data", "alpine",
            "sh", "-c", "rm -f " + " ".join(PEER_CACHE_FILES),
        ], timeout=120)
        if not clear.ok:
            logger.warning(f"Peer cache not cleared: {clear.stderr.strip()}")
        started = self.compose.up(["nethermind"])
        if started.ok:
            logger.info("✅ Nethermind restarted with cleared peer cache")
        return started.ok

    # -------------------------
    # CHAINSPEC
    # -------------------------

    def update_chainspec(self) -> ChainResult:
        url = self.chainspec_url or self.profile.chainspec_url
        if not url:
            return ChainResult(
                Outcome.FATAL,
                f"No chainspec URL for {self.deployment.network_target.value}; set SHYFT_CHAINSPEC_URL",
            )

        try:
            response = self.http.get(url, timeout=60)
        except requests.exceptions.RequestException as e:
            return ChainResult(Outcome.FATAL, f"Chainspec download failed: {e}")
        if response.status_code != 200:
            return ChainResult(Outcome.FATAL, f"Chainspec download failed [{response.status_code}]")

        content = response.content
        if len(content) < MIN_CHAINSPEC_BYTES:
            return ChainResult(Outcome.FATAL, f"Downloaded chainspec too small ({len(content)} bytes)")
        try:
            json.loads(content)
        except ValueError:
            return ChainResult(Outcome.FATAL, "Downloaded chainspec is not valid JSON")

        target = self.chain_dir / CHAINSPEC_FILE
        if target.is_file() and target.read_bytes() == content:
            logger.info("Chainspec already up to date")
            return ChainResult(Outcome.SUCCESS, "Chainspec unchanged")

        details = {}
        if target.is_file():
            backup = target.with_name(f"{target.name}.backup.{datetime.now().strftime('%Y%m%d_%H%M%S')}")
            shutil.copy2(target, backup)
            details["backup"] = str(backup)
            logger.info(f"Backed up chainspec to {backup}")

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.info(f"✅ Chainspec updated from {url}")
        return ChainResult(Outcome.SUCCESS, "Chainspec updated; restart nethermind to apply", details=details)
