"""Dramatiq task definitions for background OCR processing.

Two actors do the slow work of the OCR pipeline:

* ``process_batch_file`` extracts one file of a batch session and merges
  the outcome into the session through the session aggregator;
* ``process_receipt`` extracts a single uploaded receipt and updates its
  row in place.

To run these tasks start a Dramatiq worker pointed at the worker module:

```bash
dramatiq reimburseme.worker --processes 1 --threads 4
```

The broker URL defaults to ``REDIS_URL``.  Setting
``DRAMATIQ_BROKER_URL=stub://`` selects an in-process ``StubBroker``,
which the test-suite uses together with ``dramatiq.Worker``.

Retry policy: infrastructure errors (database, lock, Redis) propagate
and are retried up to ``QUEUE_MAX_RETRIES`` times with exponential
backoff.  Malformed payloads and out-of-range indices are never retried.
Extraction failures are not errors at this level at all; they are
recorded as failed files or failed receipts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import AgeLimit, Retries, ShutdownNotifications, TimeLimit
from pydantic import ValidationError as PydanticValidationError

from reimburseme.core.config import settings
from reimburseme.core.exceptions import ValidationError
from reimburseme.models.schemas import BatchFileTask, ReceiptTask
from reimburseme.services.aggregator import SessionAggregator, process_batch_file_task
from reimburseme.services.cache import OcrCacheWriter, get_sync_redis
from reimburseme.services.extraction_service import ExtractionService
from reimburseme.services.receipt_ocr import process_receipt_task

logger = logging.getLogger(__name__)


def _has_mw(broker, mw_cls) -> bool:
    return any(isinstance(m, mw_cls) for m in broker.middleware)


def build_broker(url: Optional[str] = None):
    """Create the broker for ``url`` and make sure the required middleware is present."""
    url = url or settings.REDIS_URL
    if url.startswith("stub://"):
        broker = StubBroker()
    else:
        broker = RedisBroker(url=url)
    if not _has_mw(broker, AgeLimit):
        broker.add_middleware(AgeLimit())
    if not _has_mw(broker, TimeLimit):
        broker.add_middleware(TimeLimit())
    if not _has_mw(broker, ShutdownNotifications):
        broker.add_middleware(ShutdownNotifications())
    if not _has_mw(broker, Retries):
        broker.add_middleware(Retries())
    return broker


broker = build_broker(settings.DRAMATIQ_BROKER_URL)
dramatiq.set_broker(broker)
logger.info("Dramatiq broker configured (%s)", type(broker).__name__)


@dataclass
class WorkerContext:
    """Collaborators shared by all actor invocations in one worker process."""

    extractor: ExtractionService = field(default_factory=ExtractionService)
    aggregator: SessionAggregator = field(default_factory=SessionAggregator)
    cache_writer: Optional[OcrCacheWriter] = None

    def get_cache_writer(self) -> OcrCacheWriter:
        if self.cache_writer is None:
            self.cache_writer = OcrCacheWriter(get_sync_redis())
        return self.cache_writer


_context: Optional[WorkerContext] = None


def get_worker_context() -> WorkerContext:
    global _context
    if _context is None:
        _context = WorkerContext()
    return _context


def set_worker_context(context: Optional[WorkerContext]) -> None:
    """Install the collaborators actors use (worker boot, tests)."""
    global _context
    _context = context


_TASK_OPTIONS = dict(
    max_retries=settings.QUEUE_MAX_RETRIES,
    time_limit=settings.QUEUE_TIME_LIMIT_MS,
    min_backoff=settings.QUEUE_MIN_BACKOFF_MS,
    max_backoff=settings.QUEUE_MAX_BACKOFF_MS,
    throws=(ValidationError, PydanticValidationError),
)


@dramatiq.actor(queue_name="ocr", **_TASK_OPTIONS)
def process_batch_file(payload: dict) -> None:
    """Extract one batch file and merge the outcome into its session."""
    task = BatchFileTask.model_validate(payload)
    ctx = get_worker_context()
    status = process_batch_file_task(task, ctx.extractor, ctx.aggregator)
    logger.info(
        "Processed batch %s file %s -> %s",
        task.batch_session_id,
        task.file_index,
        status.value if status else "dropped",
    )


@dramatiq.actor(queue_name="ocr", **_TASK_OPTIONS)
def process_receipt(payload: dict) -> None:
    """Extract one single-file receipt and update its row."""
    task = ReceiptTask.model_validate(payload)
    ctx = get_worker_context()
    process_receipt_task(task, ctx.extractor, ctx.get_cache_writer())
