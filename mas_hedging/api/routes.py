from fastapi import APIRouter

from mas_hedging.api.endpoints import (
    health,
    auth,
    market,
    positions,
    dashboard,
    users,
)

api_router = APIRouter()
api_router.include_router(health.router, tags=["system"])
api_router.include_router(auth.router, tags=["auth"])
api_router.include_router(market.router, tags=["market"])
api_router.include_router(positions.router, tags=["positions"])
api_router.include_router(dashboard.router, tags=["dashboard"])
api_router.include_router(users.router, tags=["users"])
