"""
Integration tests for upload ingestion through the transaction service.
"""
import asyncio
import datetime as dt
import threading

import pytest

from core.config import reset_settings
from core.exceptions import DataNotFoundError
from core.schema import BatchStatus, TransactionCorrection
from services.transaction_service import NO_EXPENSES_MESSAGE, NO_VALID_ROWS_MESSAGE, TransactionService


@pytest.fixture
def service(db, rules_classifier):
    return TransactionService(db=db, classifier=rules_classifier)


def ingest(service, text):
    batch = service.create_upload("expenses.csv", len(text))
    return asyncio.run(service.process_csv_upload(batch.id, text))


def test_sample_upload_completes(service, db, sample_csv):
    batch = ingest(service, sample_csv)

    assert batch.status == BatchStatus.COMPLETED
    assert batch.total_rows == 3
    assert batch.processed_rows == 3
    assert batch.row_errors == []
    assert batch.completed_at is not None

    rows = db.get_transactions(batch.user_id, upload_id=batch.id)
    assert len(rows) == 3
    assert {r.scope for r in rows} == {1, 2, 3}
    assert all(r.co2_emissions > 0 for r in rows)

    by_description = {r.description: r for r in rows}
    assert by_description["Shell Fuel"].co2_emissions == pytest.approx(80.61)
    assert by_description["EDF Energy"].co2_emissions == pytest.approx(92.64)
    assert by_description["Ryanair"].co2_emissions == pytest.approx(58.5)
    assert by_description["Shell Fuel"].verified
    assert not by_description["Shell Fuel"].ai_classified


def test_row_errors_are_kept_with_valid_rows(service):
    text = (
        "Merchant,Amount,Date\n"
        "Shell Fuel,45.00,2024-03-01\n"
        "Refund,0.00,2024-03-02\n"
    )
    batch = ingest(service, text)

    assert batch.status == BatchStatus.COMPLETED
    assert batch.total_rows == 2
    assert batch.processed_rows == 1
    assert batch.row_errors == ["Row 3: Invalid amount: 0.00"]


def test_structural_failure_marks_batch_failed(service, db):
    batch = ingest(service, "Merchant,Amount,Category\nShell,10,Fuel\n")

    assert batch.status == BatchStatus.FAILED
    assert batch.error_message == "CSV must contain a date column"
    assert db.get_transactions(batch.user_id, upload_id=batch.id) == []


def test_no_valid_rows_marks_batch_failed(service):
    batch = ingest(service, "Merchant,Amount,Date\nShell Fuel,abc,2024-03-01\n")

    assert batch.status == BatchStatus.FAILED
    assert batch.error_message == NO_VALID_ROWS_MESSAGE
    assert batch.row_errors == ["Row 2: Invalid amount: abc"]


class GroupRecordingClassifier:
    """Rule classifier that records call order; the first two calls must run side by side."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []
        self.lock = threading.Lock()
        self.first_group = threading.Barrier(2, timeout=5)

    def classify(self, description, amount):
        with self.lock:
            self.calls.append(description)
            position = len(self.calls)
        if position <= 2:
            self.first_group.wait()
        return self.inner.classify(description, amount)


def test_batches_are_grouped(db, rules_classifier, monkeypatch, sample_csv):
    monkeypatch.setenv("CLASSIFICATION_BATCH_SIZE", "2")
    monkeypatch.setenv("CLASSIFICATION_BATCH_DELAY", "0.5")
    reset_settings()

    classifier = GroupRecordingClassifier(rules_classifier)
    sleeps = []

    async def record_sleep(delay):
        sleeps.append((delay, len(classifier.calls)))

    monkeypatch.setattr(asyncio, "sleep", record_sleep)

    service = TransactionService(db=db, classifier=classifier)
    batch = ingest(service, sample_csv)

    assert batch.processed_rows == 3
    assert len(classifier.calls) == 3
    # one pause, taken after the first group of two and before the last row
    assert sleeps == [(0.5, 2)]
    rows = db.get_transactions(batch.user_id, upload_id=batch.id)
    assert all(r.category != "Unknown" for r in rows)


def test_classifier_crash_does_not_fail_batch(db, sample_csv):
    class Exploding:
        def classify(self, description, amount):
            raise RuntimeError("boom")

    service = TransactionService(db=db, classifier=Exploding())
    batch = ingest(service, sample_csv)

    assert batch.status == BatchStatus.COMPLETED
    rows = db.get_transactions(batch.user_id, upload_id=batch.id)
    assert all(r.category == "Unknown" and r.scope == 3 for r in rows)
    assert all(r.factor_source == "Generic estimate" for r in rows)


def test_document_upload(service, db):
    text = "ACME Office Supplies\nInvoice date: 15/03/2024\nTotal: 250.00\n"
    batch = service.create_upload("invoice.txt", len(text))
    batch = asyncio.run(service.process_document_upload(batch.id, text, upload_date=dt.date(2024, 4, 1)))

    assert batch.status == BatchStatus.COMPLETED
    [row] = db.get_transactions(batch.user_id, upload_id=batch.id)
    assert row.category == "Purchased Goods"
    assert row.date == dt.date(2024, 3, 15)
    assert row.co2_emissions == pytest.approx(125.0)


def test_document_without_expenses(service):
    batch = service.create_upload("notes.txt", 10)
    batch = asyncio.run(service.process_document_upload(batch.id, "Meeting notes, nothing billed"))

    assert batch.status == BatchStatus.FAILED
    assert batch.error_message == NO_EXPENSES_MESSAGE


def test_correct_transaction(service, db, sample_csv):
    batch = ingest(service, sample_csv)
    ryanair = next(r for r in db.get_transactions(batch.user_id) if r.description == "Ryanair")

    corrected = service.correct_transaction(
        ryanair.id, TransactionCorrection(category="Business Travel", subcategory="Accommodation", scope=3)
    )

    assert corrected.subcategory == "Accommodation"
    assert corrected.co2_emissions == pytest.approx(36.45)
    assert corrected.confidence == 1.0
    assert corrected.reasoning == "Manually corrected"
    assert corrected.verified
    assert not corrected.ai_classified


def test_verify_transaction(service, db):
    text = "Merchant,Amount,Date\nZephyr Consulting,100.00,2024-03-01\n"
    batch = ingest(service, text)
    [row] = db.get_transactions(batch.user_id, upload_id=batch.id)
    assert not row.verified

    assert service.verify_transaction(row.id).verified


def test_unknown_transaction(service):
    with pytest.raises(DataNotFoundError):
        service.verify_transaction(999)


def test_export_transactions(service, sample_csv):
    ingest(service, sample_csv)
    path = service.export_transactions()
    assert path.endswith(".xlsx")
