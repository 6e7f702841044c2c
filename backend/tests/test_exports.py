from __future__ import annotations

import datetime as dt

from reimburseme.core.database import SessionLocal
from reimburseme.models.enums import BatchStatus, PlanType, ReceiptStatus
from reimburseme.models.schemas import FileRecord
from reimburseme.models.tables import Receipt
from reimburseme.services.export_service import CSV_COLUMNS, CsvRow, render_csv, rows_from_batch_files

from factories import create_batch, create_user, sample_data

HEADER = ",".join(CSV_COLUMNS)


def _batch_files():
    return [
        FileRecord(
            id="file-0",
            url="https://cdn.example.com/0.jpg",
            name="0.jpg",
            status="completed",
            extracted_data=sample_data(merchant_name='Joe "The" Diner', amount=10),
        ).to_json(),
        FileRecord(id="file-1", url="https://cdn.example.com/1.jpg", status="failed", error="boom").to_json(),
        FileRecord(id="file-2", url="https://cdn.example.com/2.jpg").to_json(),
    ]


def test_render_csv_quotes_every_field_and_doubles_quotes():
    row = CsvRow(
        id=1,
        date=dt.date(2025, 3, 14),
        merchant='Joe "The" Diner, LLC',
        category="Meals",
        amount=20,
        currency="USD",
        note=None,
        file_url=None,
        created_at=dt.datetime(2025, 3, 15, 10, 0, 0),
    )

    content = render_csv([row])

    header, line = content.split("\n")
    assert header == "id,date,merchant,category,amount,currency,note,file_url,created_at"
    assert line == (
        '"1","2025-03-14","Joe ""The"" Diner, LLC","Meals","20.00","USD","","",'
        '"2025-03-15T10:00:00.000Z"'
    )


def test_render_csv_defaults_for_missing_values():
    row = CsvRow(id=3, date=None, merchant=None, category=None, amount=None, currency=None, note=None, file_url=None, created_at=None)
    line = render_csv([row]).split("\n")[1]
    assert line == '"3","N/A","Unknown","Other","0.00","USD","","",""'


def test_render_csv_without_rows_is_header_only():
    assert render_csv([]) == HEADER


def test_batch_rows_only_include_completed_files():
    rows = rows_from_batch_files(_batch_files())

    assert len(rows) == 1
    assert rows[0].id == 1
    assert rows[0].merchant == 'Joe "The" Diner'
    assert rows[0].file_url == "https://cdn.example.com/0.jpg"
    assert rows[0].note == "Extracted using AI"


def test_export_of_unpaid_batch_is_404(client, user):
    batch = create_batch(user.id, status=BatchStatus.COMPLETED)

    resp = client.post("/exports/csv", json={"batchSessionId": batch.session_id})

    assert resp.status_code == 404
    assert resp.json() == {"error": "Batch session not found or payment not completed"}


def test_export_of_paid_batch_returns_csv_attachment(client, user):
    batch = create_batch(
        user.id,
        status=BatchStatus.FAILED,
        files=_batch_files(),
        paid_at=dt.datetime.utcnow(),
        payment_id="pi_123",
    )

    resp = client.post("/exports/csv", json={"batchSessionId": batch.session_id})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    expected_name = f"batch-export-{batch.session_id}-{dt.date.today().isoformat()}.csv"
    assert resp.headers["content-disposition"] == f'attachment; filename="{expected_name}"'
    lines = resp.text.split("\n")
    assert lines[0] == HEADER
    assert len(lines) == 2
    assert lines[1].startswith('"1","2025-03-14","Joe ""The"" Diner","Meals","10.00","USD"')


def test_export_of_someone_elses_paid_batch_is_404(client):
    other = create_user("other@example.com")
    batch = create_batch(other.id, status=BatchStatus.COMPLETED, paid_at=dt.datetime.utcnow())

    resp = client.post("/exports/csv", json={"batchSessionId": batch.session_id})

    assert resp.status_code == 404


def _add_receipt(owner_id: int, merchant: str, day: dt.date):
    with SessionLocal() as session, session.begin():
        session.add(
            Receipt(
                owner_id=owner_id,
                status=ReceiptStatus.COMPLETED,
                merchant_name=merchant,
                amount=9.99,
                currency="EUR",
                category="Travel",
                receipt_date=day,
                file_url=f"https://cdn.example.com/{merchant}.jpg",
            )
        )


def test_receipt_export_orders_newest_first_and_counts_against_quota(client, user):
    _add_receipt(user.id, "Older", dt.date(2025, 1, 1))
    _add_receipt(user.id, "Newer", dt.date(2025, 2, 1))

    resp = client.post("/exports/csv")

    assert resp.status_code == 200
    assert f'filename="reimburseme-data-{dt.date.today().isoformat()}.csv"' in resp.headers["content-disposition"]
    lines = resp.text.split("\n")
    assert len(lines) == 3
    assert '"Newer"' in lines[1]
    assert '"Older"' in lines[2]
    assert '"9.99","EUR"' in lines[1]

    # Free plan allows one report export per month
    again = client.post("/exports/csv", json={})
    assert again.status_code == 402


def test_pro_plan_is_not_limited(app, client):
    from reimburseme.api import dependencies

    pro = create_user("pro@example.com", plan=PlanType.PRO)
    app.dependency_overrides[dependencies.get_current_user] = lambda: pro

    for _ in range(3):
        assert client.post("/exports/csv").status_code == 200


def test_pdf_export_is_not_available(client):
    resp = client.post("/exports/pdf")
    assert resp.status_code == 501
