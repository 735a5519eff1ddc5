"""
Excel export of ledger transactions with scope, factor and verification columns.
"""
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd

from core.config import get_settings
from core.exceptions import ExportError
from core.logger import setup_logger
from core.schema import LedgerTransaction

logger = setup_logger(__name__)

SHEET_NAME = "Emissions Ledger"

# Ledger field -> exported column header
LEDGER_COLUMNS = {
    "date": "Date",
    "description": "Description",
    "amount": "Amount",
    "scope": "Scope",
    "category": "Category",
    "subcategory": "Subcategory",
    "emissions_factor": "Emission Factor",
    "emission_unit": "Factor Unit",
    "factor_source": "Factor Source",
    "co2_emissions": "CO2e (kg)",
    "confidence": "Classification Confidence",
    "ai_classified": "AI Classified",
    "verified": "Verified",
    "reasoning": "Reasoning",
}


def ledger_to_dataframe(transactions: List[LedgerTransaction]) -> pd.DataFrame:
    """One row per transaction, columns in LEDGER_COLUMNS order."""
    records = [t.model_dump(include=set(LEDGER_COLUMNS)) for t in transactions]
    df = pd.DataFrame(records, columns=list(LEDGER_COLUMNS))
    df["date"] = df["date"].astype(str)
    df["verified"] = df["verified"].map({True: "Yes", False: "No"})
    df["ai_classified"] = df["ai_classified"].map({True: "Yes", False: "No"})
    return df.rename(columns=LEDGER_COLUMNS)


def export_to_excel(
    transactions: List[LedgerTransaction],
    output_path: str,
    sheet_name: str = SHEET_NAME
) -> str:
    """
    Export ledger transactions to an Excel workbook.

    Args:
        transactions: Ledger rows to export
        output_path: Output file path
        sheet_name: Worksheet name

    Returns:
        Path to created file

    Raises:
        ExportError: If the workbook cannot be written
    """
    logger.info(f"Exporting {len(transactions)} ledger transactions to {output_path}")

    output_df = ledger_to_dataframe(transactions)

    output_file = Path(output_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
            output_df.to_excel(writer, sheet_name=sheet_name, index=False)

            workbook = writer.book
            worksheet = writer.sheets[sheet_name]

            # Reasoning is free text: wrap it
            wrap_format = workbook.add_format({"text_wrap": True, "valign": "top"})
            reasoning_idx = len(output_df.columns) - 1
            worksheet.set_column(reasoning_idx, reasoning_idx, 60, wrap_format)

            number_format = workbook.add_format({"num_format": "#,##0.000"})
            for idx, col in enumerate(output_df.columns[:-1]):
                max_len = len(str(col))
                if len(output_df):
                    max_len = max(output_df[col].astype(str).map(len).max(), max_len)
                cell_format = number_format if col == LEDGER_COLUMNS["co2_emissions"] else None
                worksheet.set_column(idx, idx, min(max_len + 2, 50), cell_format)

            worksheet.freeze_panes(1, 0)

        logger.info(f"Successfully exported to {output_path}")
        return output_path

    except Exception as e:
        logger.error(f"Failed to export Excel: {e}")
        raise ExportError(
            "Failed to export to Excel",
            details={"output_path": output_path, "error": str(e)}
        )


def create_output_filename(prefix: str, extension: str = "xlsx", base_path: Optional[str] = None) -> str:
    """
    Create timestamped output filename.

    Args:
        prefix: File name prefix (e.g. "ledger", "ghg_report")
        extension: File extension without the dot
        base_path: Base directory path (defaults to configured temp storage)

    Returns:
        Full output file path
    """
    if base_path is None:
        base_path = get_settings().temp_storage_path

    Path(base_path).mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    filename = f"{prefix}_{timestamp}.{extension}"

    return str(Path(base_path) / filename)
