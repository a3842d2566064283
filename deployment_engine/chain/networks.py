# deployment_engine/chain/networks.py
from dataclasses import dataclass
from typing import Dict, Optional

from deployment_engine.core.models import NetworkTarget

PRIMUS_QUERY = "/primus/?_primuscb=1627594389337-0"


@dataclass(frozen=True)
class NetworkProfile:
    target: NetworkTarget
    ethstats_host: str
    ethstats_secret: str
    chainspec_url: Optional[str] = None

    @property
    def ethstats_server(self) -> str:
        return f"wss://{self.ethstats_host}/api"

    @property
    def enodes_endpoint(self) -> str:
        return f"wss://{self.ethstats_host}{PRIMUS_QUERY}"


NETWORKS: Dict[NetworkTarget, NetworkProfile] = {
    NetworkTarget.VERISCOPE_TESTNET: NetworkProfile(
        target=NetworkTarget.VERISCOPE_TESTNET,
        ethstats_host="fedstats.veriscope.network",
        ethstats_secret="Oogongi4",
    ),
    NetworkTarget.FED_TESTNET: NetworkProfile(
        target=NetworkTarget.FED_TESTNET,
        ethstats_host="stats.testnet.shyft.network",
        ethstats_secret="Ish9phieph",
        chainspec_url="https://spec.shyft.network/ShyftTestnet-current.json",
    ),
    NetworkTarget.FED_MAINNET: NetworkProfile(
        target=NetworkTarget.FED_MAINNET,
        ethstats_host="stats.shyft.network",
        ethstats_secret="uL4tohChia",
        chainspec_url="https://spec.shyft.network/ShyftMainnet-current.json",
    ),
}


def profile_for(target: NetworkTarget) -> NetworkProfile:
    return NETWORKS[target]
