"""Agent API router aggregation."""

from fastapi import APIRouter

from commission_engine.api.agent.commissions import router as commissions_router
from commission_engine.api.agent.disputes import router as disputes_router

agent_router = APIRouter(prefix="/agent", tags=["Agent"])

agent_router.include_router(commissions_router)
agent_router.include_router(disputes_router)

__all__ = ["agent_router"]
