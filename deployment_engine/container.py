# deployment_engine/container.py

"""Dependency injection container - wires all components for one deployment."""

import time
from dataclasses import dataclass
from typing import List, Optional

from deployment_engine.backups.service import BackupManager
from deployment_engine.certificates.service import CertificateManager
from deployment_engine.chain.ethstats import EthstatsClient
from deployment_engine.chain.service import ChainConfigurator
from deployment_engine.core.models import Deployment, ServiceDescriptor
from deployment_engine.credentials.service import CredentialLifecycleManager
from deployment_engine.health.monitor import HealthMonitor
from deployment_engine.health.probes import ComposeProbes, build_topology
from deployment_engine.health.rpc import JsonRpcClient
from deployment_engine.infrastructure.command.compose import ComposeClient
from deployment_engine.infrastructure.command.executor import CommandExecutor
from deployment_engine.infrastructure.docker.volumes import DockerVolumeBackend
from deployment_engine.infrastructure.envfile.store import CredentialStores
from deployment_engine.infrastructure.postgres.probe import PostgresConnectionProbe, database_url
from deployment_engine.infrastructure.settings import DeploymentSettings
from deployment_engine.orchestrator.application import ApplicationSetup
from deployment_engine.orchestrator.installer import InstallationOrchestrator
from deployment_engine.orchestrator.preflight import PreflightChecker
from deployment_engine.readiness.gate import ReadinessGate
from deployment_engine.resources.service import ResourceLifecycleManager


@dataclass
class Container:
    settings: DeploymentSettings
    deployment: Deployment
    executor: CommandExecutor
    compose: ComposeClient
    stores: CredentialStores
    rpc: JsonRpcClient
    services: List[ServiceDescriptor]
    readiness: ReadinessGate
    database_probe: PostgresConnectionProbe
    credentials: CredentialLifecycleManager
    resources: ResourceLifecycleManager
    certificates: CertificateManager
    chain: ChainConfigurator
    monitor: HealthMonitor
    application: ApplicationSetup
    orchestrator: InstallationOrchestrator
    backups: BackupManager


def build_container(
    settings: DeploymentSettings,
    deployment: Optional[Deployment] = None,
    executor=None,
    volume_backend=None,
    rpc=None,
    ethstats=None,
    sleep=time.sleep,
    clock=time.monotonic,
    full_install: bool = True,
    preflight=None,
) -> Container:
    """
    Build every component from settings.

    Raises:
        ConfigurationError: if the deployment attributes are invalid
    """
    deployment = deployment or settings.to_deployment()
    project_root = settings.project_root

    # ============================================
    # ADAPTERS
    # ============================================

    executor = executor or CommandExecutor(cwd=project_root, default_timeout=settings.command_timeout_seconds)
    compose = ComposeClient(executor, compose_file=settings.compose_file)
    stores = CredentialStores.for_project(project_root)
    rpc = rpc or JsonRpcClient(settings.rpc_url, timeout=settings.probe_timeout_seconds)
    volume_backend = volume_backend or DockerVolumeBackend()

    # ============================================
    # TOPOLOGY
    # ============================================

    probes = ComposeProbes(compose, rpc, timeout=settings.probe_timeout_seconds)
    services = build_topology(probes)
    readiness = ReadinessGate(sleep=sleep, clock=clock)

    root_store = stores[CredentialStores.ROOT]
    database_probe = PostgresConnectionProbe(lambda: database_url(
        user=root_store.get("POSTGRES_USER") or "trustanchor",
        password=root_store.get("POSTGRES_PASSWORD") or "",
        host=settings.postgres_host,
        port=settings.postgres_port,
        db=root_store.get("POSTGRES_DB") or "trustanchor",
    ))

    # ============================================
    # LIFECYCLE MANAGERS
    # ============================================

    credentials = CredentialLifecycleManager(deployment, stores, compose=compose)
    resources = ResourceLifecycleManager(volume_backend, compose=compose)
    certificates = CertificateManager(
        deployment,
        compose,
        root_store,
        nginx_dir=project_root / "docker-scripts" / "nginx",
    )
    chain = ChainConfigurator(
        deployment,
        project_root,
        stores,
        compose,
        rpc=rpc,
        ethstats=ethstats or EthstatsClient(),
        chainspec_url=settings.shyft_chainspec_url,
    )
    monitor = HealthMonitor(services, rpc=rpc, certificates=certificates,
                            probe_deadline=settings.probe_timeout_seconds + 5)
    application = ApplicationSetup(compose, stores[CredentialStores.DASHBOARD], full_install=full_install)
    backup_dir = settings.backup_dir if settings.backup_dir.is_absolute() else project_root / settings.backup_dir
    backups = BackupManager(
        compose,
        project_root,
        backup_dir,
        root_store,
        readiness=readiness,
        probes=probes,
    )

    # ============================================
    # ORCHESTRATOR
    # ============================================

    orchestrator = InstallationOrchestrator(
        deployment=deployment,
        preflight=preflight or PreflightChecker(executor, project_root=project_root),
        credentials=credentials,
        resources=resources,
        compose=compose,
        readiness=readiness,
        services=services,
        certificates=certificates,
        chain=chain,
        application=application,
        monitor=monitor,
        readiness_interval=settings.readiness_interval_seconds,
        readiness_timeout=settings.readiness_timeout_seconds,
    )

    return Container(
        settings=settings,
        deployment=deployment,
        executor=executor,
        compose=compose,
        stores=stores,
        rpc=rpc,
        services=services,
        readiness=readiness,
        database_probe=database_probe,
        credentials=credentials,
        resources=resources,
        certificates=certificates,
        chain=chain,
        monitor=monitor,
        application=application,
        orchestrator=orchestrator,
        backups=backups,
    )
