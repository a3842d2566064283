# deployment_engine/api/routes/health.py
from fastapi import APIRouter, Depends

from deployment_engine.api.container import get_deployment, get_monitor
from deployment_engine.api.schemas.health import (
    ServicesResponse,
    SyncStatusResponse,
    SystemHealthResponse,
)
from deployment_engine.core.models import SyncStatus

router = APIRouter(prefix="/system-checks", tags=["system-checks"])


def _sync_response(sync: SyncStatus) -> SyncStatusResponse:
    return SyncStatusResponse(
        state=sync.state.value,
        current_block=sync.current_block,
        highest_block=sync.highest_block,
        peer_count=sync.peer_count,
        progress_percent=sync.progress_percent,
        warnings=list(sync.warnings),
    )


@router.get("", response_model=SystemHealthResponse)
def system_checks(
    monitor=Depends(get_monitor),
    deployment=Depends(get_deployment),
):
    health = monitor.run_system_check(deployment.service_host)

    return SystemHealthResponse(
        healthy=health.healthy,
        services=ServicesResponse(up=health.services.up, down=health.services.down),
        sync=_sync_response(health.sync),
        certificate=health.certificate.value if health.certificate else None,
    )


@router.get("/services", response_model=ServicesResponse)
def services(monitor=Depends(get_monitor)):
    report = monitor.check_all()
    return ServicesResponse(up=report.up, down=report.down)


@router.get("/sync", response_model=SyncStatusResponse)
def sync_status(monitor=Depends(get_monitor)):
    return _sync_response(monitor.derive_sync_status())
