"""
Delimited-text parsing for expense uploads.
Header names are discovered by synonym, not by column position.
"""
import io
import re
from typing import Dict, List, Optional, Sequence

import pandas as pd

from core.exceptions import ParsingError
from core.logger import setup_logger
from core.normalize import clean_amount, is_missing, parse_date
from core.schema import CandidateTransaction, ParseResult, StructureValidation

logger = setup_logger(__name__)

# Accepted header synonyms per logical field, in lookup order
FIELD_SYNONYMS: Dict[str, List[str]] = {
    "description": ["description", "merchant", "payee", "details", "transaction_details", "memo"],
    "amount": ["amount", "value", "sum", "total", "debit", "credit", "transaction_amount"],
    "date": ["date", "transaction_date", "payment_date", "posting_date", "value_date"],
}

# Header pre-check patterns (applied to the '|'-joined lowercase header)
HEADER_PATTERNS: Dict[str, re.Pattern] = {
    "description": re.compile(r"description|merchant|payee|details|memo"),
    "amount": re.compile(r"amount|value|sum|total|debit|credit"),
    "date": re.compile(r"date|payment|posting|value"),
}

HEADER_ERRORS: Dict[str, str] = {
    "description": "CSV must contain a description/merchant/payee column",
    "amount": "CSV must contain an amount/value/sum column",
    "date": "CSV must contain a date column",
}

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")
MIN_DESCRIPTION_LENGTH = 3


def strip_bom(text: str) -> str:
    return text[1:] if text.startswith("\ufeff") else text


def _non_blank_lines(text: str) -> List[str]:
    return [line for line in text.splitlines() if line.strip()]


def detect_delimiter(header_line: str) -> str:
    """Pick the candidate delimiter occurring most often in the header."""
    counts = {d: header_line.count(d) for d in CANDIDATE_DELIMITERS}
    best = max(counts, key=counts.get)
    return best if counts[best] > 0 else ","


def read_delimited(raw_text: str, nrows: Optional[int] = None) -> pd.DataFrame:
    """
    Read delimited text into a string-typed DataFrame.

    Raises:
        ParsingError: If the text cannot be tokenized
    """
    text = strip_bom(raw_text)
    lines = _non_blank_lines(text)
    delimiter = detect_delimiter(lines[0]) if lines else ","

    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            skipinitialspace=True,
            nrows=nrows,
        )
    except Exception as e:
        raise ParsingError(
            f"CSV parsing failed: {e}",
            details={"delimiter": delimiter, "error": str(e)}
        )

    df.columns = [str(col).strip() for col in df.columns]
    return df


def validate_csv_structure(raw_text: str) -> StructureValidation:
    """
    Check header shape before any row is parsed.

    Requires at least two non-blank lines, three header columns and a
    header that names a description, an amount and a date column.

    Args:
        raw_text: Raw delimited text

    Returns:
        StructureValidation with one named error per missing field
    """
    text = strip_bom(raw_text or "")
    errors: List[str] = []

    if len(_non_blank_lines(text)) < 2:
        errors.append("CSV must have at least a header row and one data row")
        return StructureValidation(is_valid=False, errors=errors)

    try:
        header = list(read_delimited(text, nrows=0).columns)
    except ParsingError as e:
        errors.append(f"CSV structure validation failed: {e.message}")
        return StructureValidation(is_valid=False, errors=errors)

    if len(header) < 3:
        errors.append("CSV must have at least 3 columns (description, amount, date)")
        return StructureValidation(is_valid=False, errors=errors)

    header_str = "|".join(header).lower()
    for field, pattern in HEADER_PATTERNS.items():
        if not pattern.search(header_str):
            errors.append(HEADER_ERRORS[field])

    return StructureValidation(is_valid=not errors, errors=errors)


def find_field(columns: Sequence[str], synonyms: Sequence[str]) -> Optional[str]:
    """
    Find the column holding a logical field.

    For each synonym in order tries exact, case-insensitive exact and
    case-insensitive substring matches.

    Args:
        columns: Header column names
        synonyms: Accepted names for the field

    Returns:
        Matching column name or None
    """
    for synonym in synonyms:
        if synonym in columns:
            return synonym

        syn_lower = synonym.lower()
        for column in columns:
            if column.lower() == syn_lower:
                return column

        for column in columns:
            col_lower = column.lower()
            if col_lower and (syn_lower in col_lower or col_lower in syn_lower):
                return column

    return None


def map_columns(columns: Sequence[str]) -> Dict[str, Optional[str]]:
    """Resolve each logical field to a header column."""
    return {field: find_field(columns, synonyms) for field, synonyms in FIELD_SYNONYMS.items()}


def parse_row(
    record: Dict[str, str],
    column_map: Dict[str, Optional[str]],
) -> CandidateTransaction:
    """
    Turn one raw record into a candidate transaction.

    Raises:
        ValueError: With a human-readable reason when the row is invalid
    """
    missing = [
        field for field, column in column_map.items()
        if column is None or is_missing(record.get(column))
    ]
    if missing:
        raise ValueError(f"Missing required field: {', '.join(missing)}")

    raw_amount = record[column_map["amount"]]
    amount = clean_amount(raw_amount)
    if amount is None or amount <= 0:
        raise ValueError(f"Invalid amount: {raw_amount}")

    raw_date = record[column_map["date"]]
    date = parse_date(raw_date)
    if date is None:
        raise ValueError(f"Invalid date: {raw_date}")

    description = str(record[column_map["description"]]).strip()
    if len(description) < MIN_DESCRIPTION_LENGTH:
        raise ValueError("Description too short")

    return CandidateTransaction(
        description=description,
        amount=amount,
        date=date,
        raw_fields=dict(record),
    )


def parse_csv(raw_text: str) -> ParseResult:
    """
    Parse delimited text into candidate transactions.

    Rows fail independently; each failure is recorded as a
    row-numbered message (row 2 is the first data row).

    Args:
        raw_text: UTF-8 delimited text, first row is the header

    Returns:
        ParseResult with transactions, errors and row counts
    """
    try:
        df = read_delimited(raw_text or "")
    except ParsingError as e:
        logger.error(f"Failed to read delimited input: {e.message}")
        return ParseResult(errors=[e.message])

    # Drop rows that are empty in every column
    if len(df):
        df = df[~df.apply(lambda row: all(is_missing(v) for v in row), axis=1)]

    column_map = map_columns(list(df.columns))
    logger.debug(f"Column mapping: {column_map}")

    transactions: List[CandidateTransaction] = []
    errors: List[str] = []

    for position, (_, row) in enumerate(df.iterrows()):
        row_number = position + 2
        record = {col: ("" if is_missing(val) else str(val).strip()) for col, val in row.items()}
        try:
            transactions.append(parse_row(record, column_map))
        except ValueError as e:
            errors.append(f"Row {row_number}: {e}")

    total_rows = len(df)
    logger.info(f"Parsed {len(transactions)}/{total_rows} rows ({len(errors)} row errors)")

    return ParseResult(
        transactions=transactions,
        errors=errors,
        total_rows=total_rows,
        valid_rows=len(transactions),
    )
