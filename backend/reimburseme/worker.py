"""Dramatiq worker entry point.

This module loads configuration, initialises logging and Sentry, and
imports the task module so the broker and both OCR actors are
registered when the worker starts.

Run with:
    dramatiq reimburseme.worker --processes 1 --threads 4
"""

import logging

from reimburseme.core.config import settings
from reimburseme.core.observability import init_sentry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if init_sentry("worker"):
    logger.info("Sentry SDK initialized for worker")

# Import tasks to register the broker and actors
from reimburseme.core.tasks import broker, get_worker_context, process_batch_file, process_receipt  # noqa: E402,F401

# Build shared clients once at process start
get_worker_context()

logger.info(
    "Worker ready: actors=%s environment=%s",
    ", ".join(sorted(broker.get_declared_actors())),
    settings.ENVIRONMENT,
)
