from fastapi import APIRouter

from vibe_engine.api.v1.endpoints import boards, health, models, providers

v1_router = APIRouter()
v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(boards.router, tags=["boards"])
v1_router.include_router(providers.router, tags=["providers"])
v1_router.include_router(models.router, tags=["models"])
