# deployment_engine/health/monitor.py
"""
Health & Sync Monitor.

Per-service probes are read-only, so ``check_all`` fans them out on a
bounded thread pool and waits for every one of them (or its deadline)
before aggregating. Sync status is derived field-by-field: a garbled RPC
answer degrades that field to unknown instead of failing the whole check.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from deployment_engine.core.errors import RpcError
from deployment_engine.core.models import (
    CertificateState,
    ServiceDescriptor,
    ServiceState,
    SyncState,
    SyncStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_PROBE_DEADLINE = 15
MAX_PROBE_WORKERS = 8


@dataclass
class HealthReport:
    up: List[str] = field(default_factory=list)
    down: List[str] = field(default_factory=list)

    @property
    def all_up(self) -> bool:
        return not self.down


@dataclass
class SystemHealth:
    services: HealthReport
    sync: SyncStatus
    certificate: Optional[CertificateState] = None

    @property
    def healthy(self) -> bool:
        # Expiring-soon is surfaced but only an expired certificate fails the check
        return self.services.all_up and self.certificate != CertificateState.EXPIRED


def parse_hex_int(value: Any) -> Optional[int]:
    """Decode a JSON-RPC quantity ("0x1a") to int; anything unparsable is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    try:
        if text.startswith("0x"):
            return int(text, 16)
        return int(text)
    except ValueError:
        return None


class HealthMonitor:

    def __init__(self, services: Iterable[ServiceDescriptor] = (), rpc=None, certificates=None,
                 probe_deadline: float = DEFAULT_PROBE_DEADLINE):
        self.services = list(services)
        self.rpc = rpc
        self.certificates = certificates
        self.probe_deadline = probe_deadline

    # -------------------------
    # SERVICES
    # -------------------------

    def check_service(self, descriptor: ServiceDescriptor) -> ServiceState:
        try:
            return ServiceState.UP if descriptor.probe() else ServiceState.DOWN
        except Exception as e:
            logger.warning(f"Probe for {descriptor.name} raised {type(e).__name__}: {e}")
            return ServiceState.DOWN

    def check_all(self, descriptors: Optional[Iterable[ServiceDescriptor]] = None) -> HealthReport:
        descriptors = list(descriptors if descriptors is not None else self.services)
        if not descriptors:
            return HealthReport()

        pool = ThreadPoolExecutor(max_workers=min(MAX_PROBE_WORKERS, len(descriptors)),
                                  thread_name_prefix="probe")
        try:
            futures = {pool.submit(self.check_service, d): d for d in descriptors}
            done, _ = wait(futures, timeout=self.probe_deadline)
        finally:
            # Do not wait on stragglers; they are reported down below
            pool.shutdown(wait=False, cancel_futures=True)

        report = HealthReport()
        for future, descriptor in futures.items():
            if future in done and future.result() == ServiceState.UP:
                report.up.append(descriptor.name)
            else:
                if future not in done:
                    logger.warning(f"Probe for {descriptor.name} exceeded {self.probe_deadline}s")
                report.down.append(descriptor.name)

        # Keep topology order in the report
        order = {d.name: i for i, d in enumerate(descriptors)}
        report.up.sort(key=order.get)
        report.down.sort(key=order.get)
        return report

    # -------------------------
    # SYNC STATUS
    # -------------------------

    def _query(self, rpc, method: str):
        try:
            return rpc.call(method), True
        except RpcError as e:
            logger.debug(f"{method} unavailable: {e}")
            return None, False

    def derive_sync_status(self, rpc=None) -> SyncStatus:
        rpc = rpc or self.rpc
        status = SyncStatus()

        syncing, syncing_ok = self._query(rpc, "eth_syncing")
        peers, _ = self._query(rpc, "net_peerCount")
        height, _ = self._query(rpc, "eth_blockNumber")

        status.peer_count = parse_hex_int(peers)
        height = parse_hex_int(height)

        sync_parsed = syncing_ok and (syncing is False or isinstance(syncing, dict))

        if isinstance(syncing, dict):
            status.current_block = parse_hex_int(syncing.get("currentBlock"))
            if status.current_block is None:
                status.current_block = height
            status.highest_block = parse_hex_int(syncing.get("highestBlock"))

            if not status.highest_block:
                # No usable target height; progress cannot be computed
                status.state = SyncState.UNKNOWN
            else:
                status.state = SyncState.SYNCING
                if status.current_block is not None:
                    status.progress_percent = status.current_block * 100 // status.highest_block
        elif syncing is False and height is not None:
            status.state = SyncState.SYNCED
            status.current_block = height
            status.progress_percent = 100
        elif not sync_parsed and height is None:
            status.state = SyncState.UNREACHABLE
        else:
            status.current_block = height
            status.state = SyncState.UNKNOWN

        if status.peer_count == 0:
            status.warnings.append("Node has 0 peers (isolated)")
            logger.warning("⚠️  Blockchain node has 0 peers (isolated)")

        return status

    # -------------------------
    # FULL CHECK
    # -------------------------

    def run_system_check(self, domain: Optional[str] = None) -> SystemHealth:
        services = self.check_all()
        sync = self.derive_sync_status() if self.rpc is not None else SyncStatus()

        certificate = None
        if self.certificates is not None:
            certificate = self.certificates.current_state(domain)

        health = SystemHealth(services=services, sync=sync, certificate=certificate)
        if health.healthy:
            logger.info(f"✅ System healthy: {len(services.up)} services up, sync={sync.state.value}")
        else:
            logger.error(f"❌ System unhealthy: down={services.down}, certificate={certificate}")
        return health
