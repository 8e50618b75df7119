"""Health check endpoints."""

from fastapi import APIRouter

from storesync.kernel.time import isoformat_z, utc_now

router = APIRouter()

_startup_time = utc_now()


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if the service is running.
    """
    now = utc_now()
    return {
        "status": "healthy",
        "service": "storesync",
        "version": "0.1.0",
        "timestamp": isoformat_z(now),
        "uptime_seconds": (now - _startup_time).total_seconds(),
    }
