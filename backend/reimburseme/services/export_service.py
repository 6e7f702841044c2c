"""CSV export of receipts and paid batch sessions.

A batch export reads a terminal, paid batch session and emits one row
per ``completed`` file with extracted data; failed and pending files are
skipped.  A regular export emits every receipt the caller owns and
counts against the ``report_exports`` quota.

Every data field is quoted with embedded quotes doubled; the header line
is written bare.
"""

from __future__ import annotations

import csv
import datetime as dt
import io
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.core.exceptions import NotFoundError
from reimburseme.models.enums import FileStatus, UsageFeature
from reimburseme.models.schemas import FileRecord
from reimburseme.models.tables import BatchSession, Receipt, User
from reimburseme.services.billing_service import BillingService

CSV_COLUMNS = ["id", "date", "merchant", "category", "amount", "currency", "note", "file_url", "created_at"]


@dataclass
class CsvRow:
    id: int
    date: Optional[dt.date]
    merchant: Optional[str]
    category: Optional[str]
    amount: Optional[float]
    currency: Optional[str]
    note: Optional[str]
    file_url: Optional[str]
    created_at: Optional[dt.datetime]

    def cells(self) -> List[str]:
        return [
            str(self.id),
            self.date.isoformat() if self.date else "N/A",
            self.merchant or "Unknown",
            self.category or "Other",
            f"{self.amount:.2f}" if self.amount else "0.00",
            self.currency or "USD",
            self.note or "",
            self.file_url or "",
            _iso_timestamp(self.created_at),
        ]


@dataclass
class CsvExport:
    filename: str
    content: str


def _iso_timestamp(value: Optional[dt.datetime]) -> str:
    if value is None:
        return ""
    return value.isoformat(timespec="milliseconds") + "Z"


def render_csv(rows: Iterable[CsvRow]) -> str:
    """Render rows under the bare header line; rows are joined by ``\\n``."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow(row.cells())
    body = buf.getvalue().rstrip("\n")
    header = ",".join(CSV_COLUMNS)
    return f"{header}\n{body}" if body else header


def rows_from_batch_files(files: Sequence[Dict[str, Any]], now: Optional[dt.datetime] = None) -> List[CsvRow]:
    """Rows for the completed files of a batch, numbered from 1."""
    now = now or dt.datetime.utcnow()
    rows: List[CsvRow] = []
    for raw in files:
        record = FileRecord.model_validate(raw)
        if record.status is not FileStatus.COMPLETED or record.extracted_data is None:
            continue
        data = record.extracted_data
        rows.append(
            CsvRow(
                id=len(rows) + 1,
                date=dt.date.fromisoformat(data.receipt_date),
                merchant=data.merchant_name,
                category=data.category,
                amount=data.amount,
                currency=data.currency,
                note=data.extraction_notes,
                file_url=record.url,
                created_at=now,
            )
        )
    return rows


def rows_from_receipts(receipts: Iterable[Receipt]) -> List[CsvRow]:
    return [
        CsvRow(
            id=r.id,
            date=r.receipt_date,
            merchant=r.merchant_name,
            category=r.category,
            amount=r.amount,
            currency=r.currency,
            note=r.note,
            file_url=r.file_url,
            created_at=r.created_at,
        )
        for r in receipts
    ]


class ExportService:
    def __init__(self, billing: Optional[BillingService] = None):
        self.billing = billing or BillingService()

    async def export_batch(self, db: AsyncSession, user: User, session_id: str) -> CsvExport:
        """Export a paid batch session owned by ``user``.

        :raises NotFoundError: unknown, foreign or unpaid session
        """
        batch = await db.scalar(
            select(BatchSession).where(
                BatchSession.session_id == session_id,
                BatchSession.owner_id == user.id,
                BatchSession.paid_at.is_not(None),
            )
        )
        if batch is None:
            raise NotFoundError("Batch session not found or payment not completed")
        content = render_csv(rows_from_batch_files(batch.files or []))
        filename = f"batch-export-{session_id}-{dt.date.today().isoformat()}.csv"
        return CsvExport(filename=filename, content=content)

    async def export_receipts(self, db: AsyncSession, user: User) -> CsvExport:
        """Export all of ``user``'s receipts, newest receipt date first.

        :raises PaymentRequired: report export quota exhausted
        """
        await self.billing.check_limit(db, user, UsageFeature.REPORT_EXPORTS)
        result = await db.execute(
            select(Receipt)
            .where(Receipt.owner_id == user.id)
            .order_by(Receipt.receipt_date.desc(), Receipt.created_at.desc())
        )
        content = render_csv(rows_from_receipts(result.scalars().all()))
        await self.billing.increment_usage(db, user.id, UsageFeature.REPORT_EXPORTS)
        filename = f"reimburseme-data-{dt.date.today().isoformat()}.csv"
        return CsvExport(filename=filename, content=content)
