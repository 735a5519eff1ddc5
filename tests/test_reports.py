"""
Tests for the narrative PDF report.
"""
import datetime as dt

import pytest

from core.exceptions import ReportGenerationError
from core.reports import build_story, generate_pdf_report
from core.schema import LedgerTransaction


def ledger_rows():
    return [
        LedgerTransaction(
            user_id="u1", upload_id="b1", description=f"Shell Fuel #{i}", amount=45.0,
            date=dt.date(2024, 3, 1), category="Fuel and Energy", scope=1,
            co2_emissions=80.61 + i, factor_source="DEFRA 2024",
        )
        for i in range(12)
    ] + [
        LedgerTransaction(
            user_id="u1", upload_id="b1", description="EDF Energy", amount=120.0,
            date=dt.date(2024, 3, 5), category="Energy", scope=2, co2_emissions=92.64,
        )
    ]


def test_generate_pdf_report(tmp_path):
    output = tmp_path / "reports" / "report.pdf"
    path = generate_pdf_report(
        str(output),
        title="GHG Emissions Report 2024",
        company_name="Acme GmbH",
        start_date=dt.date(2024, 1, 1),
        end_date=dt.date(2024, 12, 31),
        transactions=ledger_rows(),
    )

    assert path == str(output)
    assert output.read_bytes().startswith(b"%PDF")


def test_empty_period_still_renders(tmp_path):
    output = tmp_path / "empty.pdf"
    generate_pdf_report(
        str(output), "Empty", "Acme GmbH", dt.date(2024, 1, 1), dt.date(2024, 1, 31), []
    )
    assert output.exists()


def test_story_has_content():
    story = build_story(
        "Report", "Acme GmbH", dt.date(2024, 1, 1), dt.date(2024, 12, 31),
        ledger_rows(), dt.datetime(2025, 1, 1),
    )
    assert len(story) > 10


def test_unwritable_destination(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    with pytest.raises(ReportGenerationError):
        generate_pdf_report(
            str(blocker / "report.pdf"), "Report", "Acme", dt.date(2024, 1, 1), dt.date(2024, 1, 31), []
        )
