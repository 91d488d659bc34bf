"""Organizer API router aggregation."""

from fastapi import APIRouter

from commission_engine.api.organizer.config import router as config_router
from commission_engine.api.organizer.disputes import router as disputes_router
from commission_engine.api.organizer.exports import router as exports_router
from commission_engine.api.organizer.ledger import router as ledger_router
from commission_engine.api.organizer.payouts import router as payouts_router
from commission_engine.api.organizer.progressions import router as progressions_router

organizer_router = APIRouter(prefix="/organizer", tags=["Organizer"])

organizer_router.include_router(config_router)
organizer_router.include_router(ledger_router)
organizer_router.include_router(payouts_router)
organizer_router.include_router(disputes_router)
organizer_router.include_router(progressions_router)
organizer_router.include_router(exports_router)

__all__ = ["organizer_router"]
