from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from mas_hedging.core.config import Settings, get_settings

router = APIRouter()


@router.get("/health", summary="Health check")
def health_check(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {
        "status": "OK",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/status", summary="Service status")
def service_status(settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    return {
        "status": "operational",
        "service": settings.app_name,
        "version": settings.app_version,
        "market_feed": settings.market_feed_mode,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
