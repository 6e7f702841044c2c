"""Batch pipeline end to end: API -> StubBroker -> dramatiq worker -> aggregator."""

from __future__ import annotations

import dramatiq
import pytest

from reimburseme.core import tasks
from reimburseme.services.aggregator import SessionAggregator
from reimburseme.services.dispatcher import TaskQueue

from factories import FakeExtractor, RecordingCacheWriter, sample_data

GOOD_URL = "https://cdn.example.com/good.jpg"
BAD_URL = "https://cdn.example.com/bad.gif"


@pytest.fixture
def stub_worker():
    broker = tasks.broker
    broker.flush_all()
    worker = dramatiq.Worker(broker, worker_timeout=100, worker_threads=2)
    worker.start()
    yield broker
    worker.stop()
    tasks.set_worker_context(None)


@pytest.fixture
def live_queue(app):
    from reimburseme.api import dependencies

    queue = TaskQueue(tasks.process_batch_file, tasks.process_receipt)
    app.dependency_overrides[dependencies.get_task_queue] = lambda: queue
    return queue


def test_uses_in_process_broker():
    assert type(tasks.broker).__name__ == "StubBroker"
    assert {"process_batch_file", "process_receipt"} <= set(tasks.broker.get_declared_actors())


def test_batch_runs_to_terminal_status(client, live_queue, stub_worker):
    extractor = FakeExtractor(
        results={GOOD_URL: sample_data(merchant_name="Acme Hardware", amount=42)},
        failures={BAD_URL: "Unsupported file type: image/gif"},
    )
    tasks.set_worker_context(tasks.WorkerContext(extractor=extractor, aggregator=SessionAggregator()))

    resp = client.post("/ocr/batch", json={"files": [{"url": GOOD_URL, "name": "good.jpg"}, {"url": BAD_URL}]})
    assert resp.status_code == 200
    session_id = resp.json()["batchSession"]["sessionId"]

    stub_worker.join(tasks.process_batch_file.queue_name, fail_fast=True)

    body = client.get(f"/ocr/batch/status/{session_id}").json()["batchSession"]
    assert body["status"] == "failed"
    good, bad = body["files"]
    assert good["status"] == "completed"
    assert good["extractedData"]["merchant_name"] == "Acme Hardware"
    assert good["extractedData"]["amount"] == 42.0
    assert bad["status"] == "failed"
    assert bad["error"] == "Unsupported file type: image/gif"
    assert sorted(extractor.calls) == sorted([GOOD_URL, BAD_URL])


def test_single_receipt_runs_through_worker(client, live_queue, stub_worker):
    writer = RecordingCacheWriter()
    tasks.set_worker_context(tasks.WorkerContext(extractor=FakeExtractor(), cache_writer=writer))

    receipt_id = client.post("/ocr", json={"file_url": GOOD_URL}).json()["receipt_id"]
    stub_worker.join(tasks.process_receipt.queue_name, fail_fast=True)

    status = client.get(f"/ocr/status/{receipt_id}").json()
    assert status["status"] == "completed"
    assert status["receipt"]["merchant_name"] == "Blue Bottle Coffee"
    assert len(writer.stored) == 1
