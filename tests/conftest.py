#tests/conftest.py

"""Pytest configuration and fixtures."""

import pytest

from deployment_engine.core.errors import RpcError
from deployment_engine.core.models import (
    CommandResult,
    Deployment,
    DeploymentMode,
    NetworkTarget,
)
from deployment_engine.infrastructure.command.compose import ComposeClient
from deployment_engine.infrastructure.docker.volumes import VolumeRemoval
from deployment_engine.infrastructure.envfile.store import CredentialStores

COMPOSE_PS = "compose -f docker-compose.yml ps"

NODE_ENV_TEMPLATE = """\
HTTP="http://localhost:8545"
WS="ws://localhost:8545"
WEBHOOK="http://localhost:8000/webhook"
REDIS_URI="redis://127.0.0.1:6379"
ARTIFACTS_DIR="/opt/veriscope/veriscope_ta_node/artifacts/"
TRUST_ANCHOR_ACCOUNT=""
TRUST_ANCHOR_PK=""
WEBHOOK_CLIENT_SECRET=""
"""


# ============================================
# FAKES
# ============================================

class FakeCommandExecutor:
    """Records every command and answers from scripted rules (last match wins)."""

    def __init__(self):
        self.calls = []
        self.inputs = []
        self._rules = []

    def when(self, *fragments, exit_code=0, stdout="", stderr="", timed_out=False, effect=None):
        """Script a reply; ``effect(argv)`` runs first, e.g. to create a file the tool would write."""
        spec = dict(exit_code=exit_code, stdout=stdout, stderr=stderr, timed_out=timed_out)
        self._rules.append((fragments, spec, effect))
        return self

    def _answer(self, argv):
        self.calls.append(argv)
        joined = " ".join(argv)
        for fragments, spec, effect in reversed(self._rules):
            if all(f in joined for f in fragments):
                if effect is not None:
                    effect(argv)
                return CommandResult(command=argv, **spec)
        return CommandResult(command=argv, exit_code=0)

    def run(self, command, args=(), timeout=None, input_text=None):
        argv = (command, *[str(a) for a in args])
        if input_text is not None:
            self.inputs.append((argv, input_text))
        return self._answer(argv)

    def run_interactive(self, command, args=()):
        return self._answer((command, *[str(a) for a in args]))

    def commands_containing(self, *fragments):
        return [c for c in self.calls if all(f in " ".join(c) for f in fragments)]


class FakeVolumeBackend:
    def __init__(self, names=(), in_use=()):
        self.volumes = set(names)
        self.in_use = set(in_use)
        self.remove_calls = []

    def list_names(self, name_filter=None):
        return sorted(v for v in self.volumes if not name_filter or name_filter in v)

    def remove(self, name):
        self.remove_calls.append(name)
        if name in self.in_use:
            return VolumeRemoval(name=name, removed=False, error="volume is in use")
        if name not in self.volumes:
            return VolumeRemoval(name=name, removed=False, missing=True)
        self.volumes.discard(name)
        return VolumeRemoval(name=name, removed=True)


class FakeRpcClient:
    """Answers JSON-RPC methods from a dict; missing methods or exceptions raise RpcError."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    def call(self, method, params=None):
        self.calls.append(method)
        if method not in self.responses:
            raise RpcError(f"RPC {method} failed: connection refused")
        value = self.responses[method]
        if isinstance(value, Exception):
            raise value
        return value


class FakeEthstats:
    def __init__(self, enodes=()):
        self.enodes = list(enodes)
        self.endpoints = []

    def fetch_enodes(self, endpoint):
        self.endpoints.append(endpoint)
        return list(self.enodes)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def healthy_stack(executor):
    """Script the executor so every compose probe reports the service healthy."""
    executor.when(COMPOSE_PS, stdout="NAME STATUS\nveriscope-app-1 Up 2 minutes")
    executor.when("redis-cli", "ping", stdout="PONG\n")
    return executor


SYNCED_RPC = {
    "web3_clientVersion": "Nethermind/v1.25.4",
    "eth_syncing": False,
    "net_peerCount": "0x5",
    "eth_blockNumber": "0x1a2b3c",
    "admin_nodeInfo": {"enode": "enode://abc123@10.0.0.1:30303"},
}


# ============================================
# FIXTURES
# ============================================

@pytest.fixture
def project_root(tmp_path):
    """Project tree with a root .env, dashboard dir and fed_testnet chain files."""
    (tmp_path / ".env").write_text(
        "# Deployment\n"
        "VERISCOPE_SERVICE_HOST=ta.example.org\n"
        "VERISCOPE_COMMON_NAME=Example Trust Anchor\n"
        "VERISCOPE_TARGET=fed_testnet\n",
        encoding="utf-8",
    )
    (tmp_path / "veriscope_ta_dashboard").mkdir()
    (tmp_path / "veriscope_ta_node").mkdir()

    chain_dir = tmp_path / "chains" / "fed_testnet"
    (chain_dir / "artifacts").mkdir(parents=True)
    (chain_dir / "artifacts" / "TrustAnchor.json").write_text("{}", encoding="utf-8")
    (chain_dir / "ta-node-env").write_text(NODE_ENV_TEMPLATE, encoding="utf-8")
    (chain_dir / "static-nodes.json").write_text('["enode://old@1.1.1.1:30303"]\n', encoding="utf-8")
    (chain_dir / "shyftchainspec.json").write_text("{}", encoding="utf-8")
    return tmp_path


@pytest.fixture
def deployment():
    return Deployment(
        service_host="ta.example.org",
        common_name="Example Trust Anchor",
        network_target=NetworkTarget.FED_TESTNET,
        mode=DeploymentMode.PRODUCTION,
    )


@pytest.fixture
def dev_deployment():
    return Deployment(
        service_host="localhost",
        common_name="Dev Trust Anchor",
        network_target=NetworkTarget.VERISCOPE_TESTNET,
        mode=DeploymentMode.DEVELOPMENT,
    )


@pytest.fixture
def stores(project_root):
    return CredentialStores.for_project(project_root)


@pytest.fixture
def executor():
    return FakeCommandExecutor()


@pytest.fixture
def compose(executor):
    return ComposeClient(executor)


@pytest.fixture
def clock():
    return FakeClock()
