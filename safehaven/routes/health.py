"""
health.py — GET /health

Answers 200 whenever the process is up, and says separately whether
MongoDB answers and whether the expiry scanner is watching anyone. A
"disconnected" database with a "running" scanner means deadlines are
not being enforced.
"""

from fastapi import APIRouter
from pydantic import BaseModel

from safehaven.core import database as db_module
from safehaven.core.config import settings
from safehaven.services.expiry_scanner import scan_scheduler

router = APIRouter()


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    database: str  # connected | disconnected
    expiry_scanner: str  # running | stopped
    watched_owners: int  # owners with a live scan task
    environment: str


@router.get("", response_model=HealthResponse, summary="Liveness, database and scanner status")
async def health_check() -> HealthResponse:
    # Looked up through the module so tests can swap db_client's fields
    connected = await db_module.db_client.ping()
    return HealthResponse(
        version="0.1.0",
        database="connected" if connected else "disconnected",
        expiry_scanner="running" if scan_scheduler.is_running else "stopped",
        watched_owners=len(scan_scheduler.active_owners),
        environment=settings.environment,
    )
