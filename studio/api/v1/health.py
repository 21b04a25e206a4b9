"""Health check endpoint with database connectivity check."""

from fastapi import APIRouter

from studio.api.deps import ClockDep, SettingsDep, StoreDep
from studio.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def get_health(store: StoreDep, settings: SettingsDep, clock: ClockDep) -> HealthResponse:
    """
    Return service health status and database connectivity.
    Used by load balancers and monitoring.
    """
    db_status = "connected" if await store.ping() else "disconnected"

    return HealthResponse(
        environment=settings.APP_ENV,
        timestamp=clock(),
        database=db_status,
    )
