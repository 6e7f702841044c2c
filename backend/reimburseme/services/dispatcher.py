"""Job dispatcher: turns an upload into a batch session plus queued tasks.

``BatchDispatcher.submit_batch`` validates and sanitises the file list,
persists one ``BatchSession`` whose files are all ``pending``, then
enqueues one extraction task per file in index order.  The session is
committed before the first enqueue so a fast worker always finds it.

If enqueueing fails part-way the session is left as is: the files that
were never queued stay ``pending`` and the batch reports ``processing``.

``TaskQueue`` is the explicit handle over the Dramatiq actors; it is
constructed once per process and injected into routes.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, List, Optional, Sequence

import dramatiq
import redis
from sqlalchemy.ext.asyncio import AsyncSession

from reimburseme.core.config import settings
from reimburseme.core.exceptions import DownstreamFailure, ValidationError
from reimburseme.core.observability import sentry_breadcrumb, sentry_metric_inc
from reimburseme.models.enums import BatchStatus, UsageFeature
from reimburseme.models.schemas import BatchFileIn, BatchFileTask, FileRecord, ReceiptTask
from reimburseme.models.tables import BatchSession, User
from reimburseme.services.billing_service import BillingService
from reimburseme.utils.sanitization import sanitize_text, sanitize_url

logger = logging.getLogger(__name__)

_ENQUEUE_ERRORS = (dramatiq.errors.DramatiqError, redis.RedisError, OSError)


class TaskQueue:
    """Sends task payloads to the batch and single-file extraction actors.

    Every message carries the retry budget and time limit explicitly so
    the policy is visible at the call site rather than implied by actor
    defaults.
    """

    def __init__(
        self,
        batch_actor: Any,
        receipt_actor: Any,
        max_retries: Optional[int] = None,
        time_limit_ms: Optional[int] = None,
    ):
        self.batch_actor = batch_actor
        self.receipt_actor = receipt_actor
        self.max_retries = settings.QUEUE_MAX_RETRIES if max_retries is None else max_retries
        self.time_limit_ms = settings.QUEUE_TIME_LIMIT_MS if time_limit_ms is None else time_limit_ms

    def _send(self, actor: Any, payload: dict) -> str:
        try:
            message = actor.send_with_options(
                args=(payload,),
                max_retries=self.max_retries,
                time_limit=self.time_limit_ms,
            )
        except _ENQUEUE_ERRORS as exc:
            logger.error("Failed to enqueue %s: %s", getattr(actor, "actor_name", actor), exc)
            sentry_metric_inc("queue.enqueue_error", tags={"actor": getattr(actor, "actor_name", "")})
            raise DownstreamFailure("Failed to queue processing") from exc
        return message.message_id

    def enqueue_batch_file(self, task: BatchFileTask) -> str:
        return self._send(self.batch_actor, task.to_message())

    def enqueue_receipt(self, task: ReceiptTask) -> str:
        return self._send(self.receipt_actor, task.to_message())


class BatchDispatcher:
    def __init__(self, queue: TaskQueue, billing: Optional[BillingService] = None, max_files: Optional[int] = None):
        self.queue = queue
        self.billing = billing or BillingService()
        self.max_files = max_files or settings.BATCH_MAX_FILES

    def _sanitize(self, files: Sequence[BatchFileIn]) -> List[FileRecord]:
        if not files:
            raise ValidationError("At least one file is required")
        if len(files) > self.max_files:
            raise ValidationError(f"A batch may contain at most {self.max_files} files")
        records: List[FileRecord] = []
        for index, f in enumerate(files):
            url = sanitize_url(f.url)
            if not url:
                raise ValidationError("Invalid file URL provided")
            records.append(FileRecord(id=f"file-{index}", url=url, name=sanitize_text(f.name)))
        return records

    async def submit_batch(self, db: AsyncSession, user: User, files: Sequence[BatchFileIn]) -> BatchSession:
        """Create a batch session for ``files`` and enqueue one task per file.

        :raises ValidationError: empty list, too many files or a bad URL;
            nothing is created in that case
        :raises DownstreamFailure: the queue rejected a message
        """
        records = self._sanitize(files)

        batch = BatchSession(
            session_id=str(uuid.uuid4()),
            owner_id=user.id,
            status=BatchStatus.PROCESSING,
            files=[r.to_json() for r in records],
        )
        db.add(batch)
        await db.commit()
        await db.refresh(batch)
        logger.info("Created batch session %s (%s) with %d files", batch.id, batch.session_id, len(records))

        for index, record in enumerate(records):
            self.queue.enqueue_batch_file(
                BatchFileTask(
                    batch_session_id=batch.id,
                    file_index=index,
                    user_id=user.id,
                    file_url=record.url,
                    filename=record.name,
                )
            )

        await self.billing.increment_usage(db, user.id, UsageFeature.RECEIPT_UPLOADS, len(records))
        sentry_metric_inc("batch.submitted", value=len(records))
        sentry_breadcrumb(
            category="batch",
            message="batch.session.queued",
            data={"batch_session_id": batch.id, "files": len(records)},
        )
        return batch
