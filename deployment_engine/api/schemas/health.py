# deployment_engine/api/schemas/health.py
from typing import List, Optional

from pydantic import BaseModel


class ServicesResponse(BaseModel):
    up: List[str]
    down: List[str]


class SyncStatusResponse(BaseModel):
    state: str
    current_block: Optional[int] = None
    highest_block: Optional[int] = None
    peer_count: Optional[int] = None
    progress_percent: Optional[int] = None
    warnings: List[str] = []


class SystemHealthResponse(BaseModel):
    healthy: bool
    services: ServicesResponse
    sync: SyncStatusResponse
    certificate: Optional[str] = None
