"""
Narrative PDF emissions report.

Section order is fixed: header/identity, executive summary, per-scope
breakdown, methodology, top transactions per scope, verification and
compliance. Every page carries a "Page X of Y" footer.
"""
import datetime as dt
from pathlib import Path
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.analytics import scope_analysis, summarize, top_transactions
from core.exceptions import ReportGenerationError
from core.logger import setup_logger
from core.schema import LedgerTransaction

logger = setup_logger(__name__)

SCOPE_DESCRIPTIONS = {
    1: "Direct emissions from owned or controlled sources such as company vehicles and on-site fuel combustion.",
    2: "Indirect emissions from purchased electricity, heat, steam and cooling.",
    3: "All other indirect emissions in the value chain, including business travel, purchased goods and services, and waste.",
}

METHODOLOGY_TEXT = (
    "Emissions are calculated following the GHG Protocol Corporate Accounting and Reporting Standard "
    "using a spend-based approach. Each transaction is classified into a scope and emission category, "
    "by an AI classifier where available and by deterministic keyword rules otherwise. Monetary amounts "
    "are converted to activity data (litres, kWh, kilometres, nights) using average price assumptions "
    "and multiplied by DEFRA 2024 emission factors. Where no specific factor applies, a generic "
    "spend-based factor per scope is used. Results are estimates and should be refined with activity data."
)

FOOTER_TEXT = "GHG Protocol Corporate Standard | Generated by Carbon Ledger Service"
TOP_N = 10
DESCRIPTION_WIDTH = 45

TABLE_STYLE = TableStyle([
    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
    ("ALIGN", (0, 0), (-1, -1), "LEFT"),
    ("FONTSIZE", (0, 0), (-1, -1), 8),
])


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output until the total page count is known."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_footer(total)
            super().showPage()
        super().save()

    def draw_footer(self, page_count: int):
        width, _ = self._pagesize
        self.setFont("Helvetica", 8)
        self.setFillColor(colors.grey)
        self.drawString(36, 20, FOOTER_TEXT)
        self.drawRightString(width - 36, 20, f"Page {self._pageNumber} of {page_count}")


def _kg(value: float) -> str:
    return f"{value:,.2f} kg"


def _share(value: float, total: float) -> str:
    return f"{(value / total * 100) if total > 0 else 0.0:.1f}%"


def _truncate(text: str, width: int = DESCRIPTION_WIDTH) -> str:
    return text if len(text) <= width else text[:width - 3] + "..."


def build_story(
    title: str,
    company_name: str,
    start_date: dt.date,
    end_date: dt.date,
    transactions: List[LedgerTransaction],
    generated_at: dt.datetime
) -> list:
    """Flowables for the report, in section order."""
    styles = getSampleStyleSheet()
    summary = summarize(transactions)
    analysis = scope_analysis(transactions)
    total = summary.total_emissions
    elems = []

    # Header / identity
    elems.append(Paragraph(escape(title), styles["Title"]))
    elems.append(Paragraph(f"<b>Organization:</b> {escape(company_name)}", styles["BodyText"]))
    elems.append(Paragraph(
        f"<b>Reporting period:</b> {start_date.isoformat()} to {end_date.isoformat()}", styles["BodyText"]
    ))
    elems.append(Paragraph(
        f"<b>Generated:</b> {generated_at.strftime('%Y-%m-%d %H:%M UTC')}", styles["BodyText"]
    ))
    elems.append(Spacer(1, 12))

    # Executive summary
    elems.append(Paragraph("Executive Summary", styles["Heading2"]))
    elems.append(Paragraph(
        f"Total emissions for the period were <b>{_kg(total)}</b> ({total / 1000:,.3f} t CO2e) "
        f"across {summary.transaction_count} transactions.",
        styles["BodyText"],
    ))
    elems.append(Spacer(1, 6))
    scope_rows = [["Scope", "Emissions (kg CO2e)", "Share"]]
    for scope, value in (
        (1, summary.scope1_emissions),
        (2, summary.scope2_emissions),
        (3, summary.scope3_emissions),
    ):
        scope_rows.append([f"Scope {scope}", f"{value:,.2f}", _share(value, total)])
    scope_rows.append(["Total", f"{total:,.2f}", "100.0%" if total > 0 else "0.0%"])
    table = Table(scope_rows, hAlign="LEFT")
    table.setStyle(TABLE_STYLE)
    elems.append(table)
    elems.append(Spacer(1, 12))

    # Per-scope breakdown
    elems.append(Paragraph("Emissions by Scope", styles["Heading2"]))
    for scope, breakdown in ((1, analysis.scope1), (2, analysis.scope2), (3, analysis.scope3)):
        elems.append(Paragraph(f"Scope {scope}: {_kg(breakdown.total)}", styles["Heading3"]))
        elems.append(Paragraph(SCOPE_DESCRIPTIONS[scope], styles["BodyText"]))
        if breakdown.categories:
            parts = ", ".join(
                f"{escape(c.category)} ({_kg(c.emissions)}, {c.percentage:.1f}%)"
                for c in breakdown.categories
            )
            elems.append(Paragraph(f"Main categories: {parts}.", styles["BodyText"]))
        else:
            elems.append(Paragraph("No emissions recorded in this scope.", styles["BodyText"]))
        elems.append(Spacer(1, 6))

    # Methodology
    elems.append(Paragraph("Methodology", styles["Heading2"]))
    elems.append(Paragraph(METHODOLOGY_TEXT, styles["BodyText"]))
    elems.append(Spacer(1, 12))

    # Top transactions per scope
    elems.append(Paragraph(f"Top {TOP_N} Transactions by Emissions", styles["Heading2"]))
    for scope in (1, 2, 3):
        elems.append(Paragraph(f"Scope {scope}", styles["Heading3"]))
        top = top_transactions(transactions, scope, TOP_N)
        if top:
            rows = [["Date", "Description", "Category", "Amount", "CO2e (kg)"]]
            rows.extend(
                [t.date.isoformat(), _truncate(t.description), _truncate(t.category, 25),
                 f"{t.amount:,.2f}", f"{t.co2_emissions:,.2f}"]
                for t in top
            )
            table = Table(rows, hAlign="LEFT", repeatRows=1)
            table.setStyle(TABLE_STYLE)
            elems.append(table)
        else:
            elems.append(Paragraph("No data.", styles["BodyText"]))
        elems.append(Spacer(1, 12))

    # Verification and compliance
    verified = sum(1 for t in transactions if t.verified)
    ai_classified = sum(1 for t in transactions if t.ai_classified)
    elems.append(Paragraph("Verification and Compliance", styles["Heading2"]))
    elems.append(Paragraph(
        f"{verified} of {summary.transaction_count} transactions are verified "
        f"(high-confidence classification or manual review); {ai_classified} were classified by the AI "
        "classifier and the remainder by keyword rules. This report is prepared in line with the "
        "GHG Protocol Corporate Standard and is intended to support CSRD/ESRS E1 disclosures. "
        "It has not been assured by an independent third party.",
        styles["BodyText"],
    ))

    return elems


def generate_pdf_report(
    output_path: str,
    title: str,
    company_name: str,
    start_date: dt.date,
    end_date: dt.date,
    transactions: List[LedgerTransaction],
    generated_at: Optional[dt.datetime] = None
) -> str:
    """
    Render the narrative emissions report to a PDF file.

    Args:
        output_path: Destination file
        title: Report title
        company_name: Reporting organization
        start_date: Period start
        end_date: Period end
        transactions: Ledger rows within the period
        generated_at: Generation timestamp (defaults to now, UTC)

    Returns:
        Path to created file

    Raises:
        ReportGenerationError: If rendering fails
    """
    generated_at = generated_at or dt.datetime.now(dt.timezone.utc)
    logger.info(f"Generating PDF report '{title}' with {len(transactions)} transactions")

    try:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        doc = SimpleDocTemplate(
            output_path, pagesize=A4,
            rightMargin=36, leftMargin=36, topMargin=36, bottomMargin=48,
            title=title, author=company_name,
        )
        doc.build(
            build_story(title, company_name, start_date, end_date, transactions, generated_at),
            canvasmaker=NumberedCanvas,
        )
    except Exception as e:
        logger.error(f"Failed to generate PDF report: {e}", exc_info=True)
        raise ReportGenerationError(
            "Failed to generate PDF report",
            details={"output_path": output_path, "error": str(e)}
        )

    logger.info(f"PDF report written to {output_path}")
    return output_path
