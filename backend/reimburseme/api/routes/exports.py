"""Export routes.

``POST /exports/csv`` streams back a CSV attachment, either for one paid
batch session (``batchSessionId`` in the body) or for all of the
caller's receipts.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.api.dependencies import get_current_user, get_db_session, get_export_service
from reimburseme.core.observability import sentry_metric_inc
from reimburseme.models.schemas import ExportRequest
from reimburseme.models.tables import User
from reimburseme.services.export_service import ExportService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/exports", tags=["exports"])


@router.post("/csv")
async def export_csv(
    body: Optional[ExportRequest] = Body(None),
    db: AsyncSession = Depends(get_db_session),
    user: User = Depends(get_current_user),
    service: ExportService = Depends(get_export_service),
):
    if body is not None and body.batch_session_id:
        export = await service.export_batch(db, user, body.batch_session_id)
        kind = "batch"
    else:
        export = await service.export_receipts(db, user)
        kind = "receipts"
    sentry_metric_inc("export.csv", tags={"kind": kind})
    logger.info("CSV export (%s) for user %s: %s", kind, user.id, export.filename)
    return Response(
        content=export.content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.post("/pdf")
async def export_pdf():
    return JSONResponse(status_code=501, content={"error": "PDF export is not available"})
