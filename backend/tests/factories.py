"""Fakes and row factories shared by the test modules."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from reimburseme.core.database import SessionLocal
from reimburseme.core.exceptions import DownstreamFailure, ExtractionFailure
from reimburseme.models.enums import BatchStatus, PlanType
from reimburseme.models.schemas import ExtractedData, FileRecord
from reimburseme.models.tables import BatchSession, User


class RecordingQueue:
    """Stands in for ``TaskQueue``; remembers every task instead of sending it."""

    def __init__(self, fail_after: Optional[int] = None):
        self.batch_tasks: List[Any] = []
        self.receipt_tasks: List[Any] = []
        self.fail_after = fail_after

    def enqueue_batch_file(self, task):
        if self.fail_after is not None and len(self.batch_tasks) >= self.fail_after:
            raise DownstreamFailure("Failed to queue processing")
        self.batch_tasks.append(task)
        return f"msg-{len(self.batch_tasks)}"

    def enqueue_receipt(self, task):
        self.receipt_tasks.append(task)
        return f"msg-r{len(self.receipt_tasks)}"


class FakeAsyncRedis:
    def __init__(self):
        self.store: Dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, key):
        return 1 if self.store.pop(key, None) is not None else 0


class RecordingCacheWriter:
    def __init__(self):
        self.stored: List[tuple] = []

    def store(self, owner_id, url, data):
        self.stored.append((owner_id, url, data))


class FakeExtractor:
    """Returns canned data per URL; URLs listed in ``failures`` raise ``ExtractionFailure``."""

    def __init__(self, results: Optional[Dict[str, ExtractedData]] = None, failures: Optional[Dict[str, str]] = None):
        self.results = results or {}
        self.failures = failures or {}
        self.calls: List[str] = []

    async def extract(self, file_url, filename=""):
        self.calls.append(file_url)
        if file_url in self.failures:
            raise ExtractionFailure(self.failures[file_url])
        return self.results.get(file_url) or sample_data()


def sample_data(**overrides) -> ExtractedData:
    values = dict(
        merchant_name="Blue Bottle Coffee",
        amount=12.5,
        category="Meals",
        receipt_date="2025-03-14",
        currency="USD",
        confidence="high",
        extraction_notes="Extracted using AI",
    )
    values.update(overrides)
    return ExtractedData(**values)


def create_user(email: str = "owner@example.com", plan: PlanType = PlanType.FREE) -> User:
    with SessionLocal() as session, session.begin():
        user = User(email=email, name=email.split("@")[0], plan=plan)
        session.add(user)
    return user


def create_batch(owner_id: int, n: int = 2, status: BatchStatus = BatchStatus.PROCESSING, **fields) -> BatchSession:
    files = fields.pop("files", None) or [
        FileRecord(id=f"file-{i}", url=f"https://cdn.example.com/r{i}.jpg", name=f"r{i}.jpg").to_json()
        for i in range(n)
    ]
    with SessionLocal() as session, session.begin():
        batch = BatchSession(
            session_id=str(uuid.uuid4()),
            owner_id=owner_id,
            status=status,
            files=files,
            **fields,
        )
        session.add(batch)
    return batch


def load_batch(batch_id: int) -> BatchSession:
    with SessionLocal() as session:
        return session.get(BatchSession, batch_id)
