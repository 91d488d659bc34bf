"""CSV exports for organizer bookkeeping."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.dependencies import require_organizer
from commission_engine.db import get_db
from commission_engine.models import User
from commission_engine.services.exports import payment_history_csv

router = APIRouter(prefix="/export")


@router.get("/payments.csv")
async def export_payments(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_organizer),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    agent_id: Optional[int] = Query(None),
):
    content = await payment_history_csv(
        db,
        current_user.id,
        start_date=start_date,
        end_date=end_date,
        agent_id=agent_id,
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="payments.csv"'},
    )
