"""Session aggregator: merges per-file outcomes into a batch session.

Every worker task for a batch ends here.  The merge is the only code
path that writes ``BatchSession.files`` after creation, and it always
runs as one short transaction:

1. ``SELECT ... FOR UPDATE`` the session row by primary key;
2. re-read ``files`` and ``status`` under the lock;
3. overwrite ``files[file_index]`` with the outcome;
4. recompute the aggregate status from the file statuses;
5. persist both and commit, releasing the lock.

Writes are keyed by index, so merges for different indices commute and
a redelivered outcome rewrites identical data.  Slow work (downloading,
calling the model) must happen before ``apply`` is called; the lock is
never held across network I/O.

A missing row is handled asymmetrically: a successful outcome raises
``AggregationConflict`` so the queue retries the task, while a failed
outcome is logged and dropped.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from reimburseme.core.database import SessionLocal
from reimburseme.core.exceptions import AggregationConflict, ExtractionFailure, ValidationError
from reimburseme.core.observability import sentry_breadcrumb, sentry_metric_inc
from reimburseme.models.enums import BatchStatus, FileStatus
from reimburseme.models.schemas import BatchFileTask, FileCompleted, FileFailed, FileRecord
from reimburseme.models.tables import BatchSession

logger = logging.getLogger(__name__)

Outcome = Union[FileCompleted, FileFailed]


def aggregate_status(statuses: Iterable[Union[FileStatus, str]]) -> BatchStatus:
    """Derive the batch status from its file statuses.

    ``processing`` while any file is pending, then ``failed`` if any file
    failed, otherwise ``completed``.
    """
    normalized = [FileStatus(s) for s in statuses]
    all_done = all(s is not FileStatus.PENDING for s in normalized)
    if not all_done:
        return BatchStatus.PROCESSING
    has_failures = any(s is FileStatus.FAILED for s in normalized)
    return BatchStatus.FAILED if has_failures else BatchStatus.COMPLETED


def apply_outcome(files: List[Dict[str, Any]], file_index: int, outcome: Outcome) -> List[Dict[str, Any]]:
    """Return a new ``files`` list with ``outcome`` written at ``file_index``.

    Only the record at ``file_index`` changes; the input list is not
    mutated.
    """
    if file_index < 0 or file_index >= len(files):
        raise ValidationError(f"File index {file_index} out of range for {len(files)} files")
    record = FileRecord.model_validate(files[file_index])
    if isinstance(outcome, FileCompleted):
        record.status = FileStatus.COMPLETED
        record.extracted_data = outcome.extracted_data
        record.error = None
    else:
        record.status = FileStatus.FAILED
        record.extracted_data = None
        record.error = outcome.reason
    merged = list(files)
    merged[file_index] = record.to_json()
    return merged


class SessionAggregator:
    """Applies one file outcome to a batch session under a row lock."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def apply(self, batch_session_id: int, file_index: int, outcome: Outcome) -> Optional[BatchStatus]:
        """Merge ``outcome`` into ``files[file_index]`` and return the new status.

        Returns ``None`` when a failed outcome targets a missing session.
        Merges into a session that is already terminal change nothing and
        return its current status.

        :raises AggregationConflict: successful outcome, missing session
        :raises ValidationError: ``file_index`` outside the file list
        """
        with self.session_factory() as session, session.begin():
            row = session.execute(
                select(BatchSession).where(BatchSession.id == batch_session_id).with_for_update()
            ).scalar_one_or_none()

            if row is None:
                if isinstance(outcome, FileCompleted):
                    raise AggregationConflict()
                logger.warning(
                    "Batch session %s not found while recording failure for file %s",
                    batch_session_id,
                    file_index,
                )
                return None

            current = BatchStatus(row.status)
            if current is not BatchStatus.PROCESSING:
                logger.info(
                    "Ignoring outcome for file %s of terminal batch session %s (%s)",
                    file_index,
                    batch_session_id,
                    current.value,
                )
                return current

            files = apply_outcome(row.files or [], file_index, outcome)
            status = aggregate_status(f.get("status", FileStatus.PENDING) for f in files)
            # Assign a new list so the JSON column is flagged dirty
            row.files = files
            row.status = status
            row.updated_at = dt.datetime.utcnow()

        sentry_metric_inc("batch.file.merged", tags={"outcome": outcome.status, "aggregate": status.value})
        if status is not BatchStatus.PROCESSING:
            sentry_breadcrumb(
                category="batch",
                message="batch.session.terminal",
                data={"batch_session_id": batch_session_id, "status": status.value},
            )
            logger.info("Batch session %s finished with status %s", batch_session_id, status.value)
        return status


def process_batch_file_task(task: BatchFileTask, extractor, aggregator: SessionAggregator) -> Optional[BatchStatus]:
    """Run extraction for one batch file and merge the result.

    Extraction failures become a failed file record; anything else
    (database, lock, missing row on success) propagates so the queue can
    retry the task.
    """
    try:
        data = asyncio.run(extractor.extract(task.file_url, task.filename))
        outcome: Outcome = FileCompleted(extracted_data=data)
    except ExtractionFailure as exc:
        logger.warning(
            "Extraction failed for batch %s file %s: %s",
            task.batch_session_id,
            task.file_index,
            exc.message,
        )
        outcome = FileFailed(reason=exc.message)
    return aggregator.apply(task.batch_session_id, task.file_index, outcome)
