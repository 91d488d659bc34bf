"""API router aggregation."""

from fastapi import APIRouter

from commission_engine.api.agent import agent_router
from commission_engine.api.auth import router as auth_router
from commission_engine.api.health import router as health_router
from commission_engine.api.organizer import organizer_router
from commission_engine.api.sales import router as sales_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router)
api_router.include_router(auth_router)
api_router.include_router(sales_router)
api_router.include_router(organizer_router)
api_router.include_router(agent_router)

__all__ = ["api_router"]
