from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.api.dependencies import get_current_user, get_db_session
from reimburseme.models.schemas import BatchSessionListResponse, BatchSessionRead
from reimburseme.models.tables import BatchSession, User

router = APIRouter(prefix="/batch-sessions", tags=["batch"])


@router.get("", response_model=BatchSessionListResponse, response_model_by_alias=True)
async def list_paid_sessions(
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
):
    """List the caller's paid batch sessions, most recently paid first."""
    result = await db.execute(
        select(BatchSession)
        .where(BatchSession.owner_id == user.id, BatchSession.paid_at.is_not(None))
        .order_by(BatchSession.paid_at.desc())
    )
    rows = result.scalars().all()
    return BatchSessionListResponse(batch_sessions=[BatchSessionRead.from_row(r) for r in rows])
