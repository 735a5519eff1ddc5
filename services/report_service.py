"""
Report service.
Snapshots a period of the ledger and renders it as a PDF or XBRL document.
"""
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from core.analytics import category_breakdown, summarize
from core.config import get_settings
from core.db import Database, get_db
from core.emissions import DEFAULT_FACTOR_SOURCE
from core.exceptions import ValidationError
from core.logger import setup_logger
from core.reports import generate_pdf_report
from core.schema import Report, ReportRequest, XBRLData
from core.xbrl import generate_xbrl_document, validate_xbrl_document, write_xbrl_document

logger = setup_logger(__name__)


class ReportService:
    """Creates report records and the documents behind them."""

    def __init__(self, db: Optional[Database] = None):
        self.settings = get_settings()
        self.db = db or get_db()

    def _report_path(self, report_id: str, extension: str) -> str:
        return str(Path(self.settings.reports_path) / f"ghg_report_{report_id}.{extension}")

    def _create_record(self, request: ReportRequest, report_type: str, user_id: str) -> Report:
        if request.start_date > request.end_date:
            raise ValidationError(
                "Report start date must not be after end date",
                details={"start_date": request.start_date.isoformat(), "end_date": request.end_date.isoformat()}
            )
        transactions = self.db.get_transactions(user_id, request.start_date, request.end_date)
        summary = summarize(transactions)
        return self.db.create_report(Report(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=request.title,
            report_type=report_type,
            start_date=request.start_date,
            end_date=request.end_date,
            total_emissions=summary.total_emissions,
            scope1_emissions=summary.scope1_emissions,
            scope2_emissions=summary.scope2_emissions,
            scope3_emissions=summary.scope3_emissions,
        ))

    def create_pdf_report(self, request: ReportRequest, user_id: Optional[str] = None) -> Report:
        """Register a PDF report in the generating state; render with generate_pdf."""
        return self._create_record(request, "pdf", user_id or self.settings.default_user_id)

    def generate_pdf(self, report_id: str, request: ReportRequest) -> Report:
        """
        Render a registered PDF report. Failures are recorded on the report.
        """
        report = self.db.get_report(report_id)
        try:
            transactions = self.db.get_transactions(report.user_id, report.start_date, report.end_date)
            path = generate_pdf_report(
                self._report_path(report_id, "pdf"),
                title=report.title,
                company_name=request.company_name,
                start_date=report.start_date,
                end_date=report.end_date,
                transactions=transactions,
            )
            logger.info(f"Report {report_id} completed")
            return self.db.update_report(report_id, status="completed", file_path=path)
        except Exception as e:
            logger.error(f"Report {report_id} failed: {e}", exc_info=True)
            return self.db.update_report(report_id, status="failed", error_message=str(e))

    def create_xbrl_report(self, request: ReportRequest, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Generate, validate and store an XBRL report synchronously.

        A document with blocking validation errors is kept on disk but the
        report is marked failed.

        Returns:
            report_id, filename, validation result and summary
        """
        user_id = user_id or self.settings.default_user_id
        report = self._create_record(request, "xbrl", user_id)

        transactions = self.db.get_transactions(user_id, request.start_date, request.end_date)
        summary = summarize(transactions)
        data = XBRLData(
            entity_name=request.company_name,
            entity_identifier=request.entity_identifier,
            currency=request.currency,
            start_date=request.start_date,
            end_date=request.end_date,
            summary=summary,
            categories=category_breakdown(transactions),
            emission_factors_source=DEFAULT_FACTOR_SOURCE,
        )

        document = generate_xbrl_document(data)
        validation = validate_xbrl_document(document)
        path = write_xbrl_document(document, self._report_path(report.id, "xbrl"))

        if validation.is_valid:
            self.db.update_report(report.id, status="completed", file_path=path)
        else:
            self.db.update_report(
                report.id, status="failed", file_path=path, error_message="; ".join(validation.errors)
            )

        return {
            "report_id": report.id,
            "filename": Path(path).name,
            "validation": validation,
            "summary": summary,
        }
