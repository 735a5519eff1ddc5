"""
Expense extraction from unstructured document text (OCR output, PDF text).
"""
import datetime as dt
import re
from pathlib import Path
from typing import List, Optional, Tuple

import pdfplumber

from core.logger import setup_logger
from core.normalize import clean_amount, normalize_date_string, parse_date
from core.schema import CandidateTransaction, ExtractedExpense, ExtractionResult

logger = setup_logger(__name__)

_AMOUNT_NUMBER = r"(\d+(?:,\d{3})*(?:\.\d{2})?)"

AMOUNT_PATTERNS: List[re.Pattern] = [
    re.compile(r"[\$€£¥]\s*" + _AMOUNT_NUMBER),
    re.compile(_AMOUNT_NUMBER + r"\s*(?:EUR|USD|GBP|CHF)", re.IGNORECASE),
    re.compile(r"Total[:\s]+" + _AMOUNT_NUMBER, re.IGNORECASE),
    re.compile(r"Amount[:\s]+" + _AMOUNT_NUMBER, re.IGNORECASE),
]

DATE_PATTERNS: List[re.Pattern] = [
    re.compile(r"\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"),
    re.compile(r"\d{4}[/\-.]\d{1,2}[/\-.]\d{1,2}"),
    re.compile(r"\d{1,2}\s+(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\s+\d{2,4}", re.IGNORECASE),
]

VENDOR_PATTERNS: List[re.Pattern] = [
    re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)"),
    re.compile(r"\b([A-Z]+(?:\s+[A-Z]+)*)[-\s]"),
]

_AMOUNT_ONLY_LINE = re.compile(r"^\s*[\d$€£¥,.\s]+$")
_DATE_ONLY_LINE = re.compile(r"^\s*\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}\s*$")

# Plausible single-expense range (exclusive)
MIN_EXPENSE_AMOUNT = 0.0
MAX_EXPENSE_AMOUNT = 100000.0

WINDOW = 2

# Confidence heuristic weights
CONFIDENCE_BASE = 0.3
CONFIDENCE_PER_EXPENSE = 0.1
CONFIDENCE_VOLUME_CAP = 0.4
CONFIDENCE_DATE_WEIGHT = 0.2
CONFIDENCE_VENDOR_WEIGHT = 0.1


def _window(lines: List[str], index: int) -> List[str]:
    return lines[max(0, index - WINDOW):index + WINDOW + 1]


def extract_description(lines: List[str], index: int) -> str:
    """First line in the window that is not purely an amount or a date."""
    for line in _window(lines, index):
        if not _AMOUNT_ONLY_LINE.match(line) and not _DATE_ONLY_LINE.match(line):
            return line.strip()
    return ""


def extract_date(lines: List[str], index: int) -> Optional[str]:
    """First date found in the window, ISO-normalized when parseable."""
    for line in _window(lines, index):
        for pattern in DATE_PATTERNS:
            match = pattern.search(line)
            if match:
                return normalize_date_string(match.group(0))
    return None


def extract_vendor(line: str) -> Optional[str]:
    for pattern in VENDOR_PATTERNS:
        match = pattern.search(line)
        if match and len(match.group(1).strip()) > 2:
            return match.group(1).strip()
    return None


def deduplicate(expenses: List[ExtractedExpense]) -> List[ExtractedExpense]:
    """Drop expenses matching an earlier one on description and amount (< 0.01 apart)."""
    unique: List[ExtractedExpense] = []
    for expense in expenses:
        if not any(
            abs(kept.amount - expense.amount) < 0.01 and kept.description == expense.description
            for kept in unique
        ):
            unique.append(expense)
    return unique


def calculate_confidence(expenses: List[ExtractedExpense]) -> float:
    """Heuristic score in [0, 1] from volume, date coverage and vendor coverage."""
    if not expenses:
        return 0.0

    total = len(expenses)
    score = CONFIDENCE_BASE
    score += min(total * CONFIDENCE_PER_EXPENSE, CONFIDENCE_VOLUME_CAP)
    score += sum(1 for e in expenses if e.date) / total * CONFIDENCE_DATE_WEIGHT
    score += sum(1 for e in expenses if e.vendor) / total * CONFIDENCE_VENDOR_WEIGHT
    return min(score, 1.0)


def extract_expenses(text: str) -> ExtractionResult:
    """
    Scan document text line by line for expenses.

    Args:
        text: Plain text of the document

    Returns:
        ExtractionResult with deduplicated expenses and a confidence score
    """
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    expenses: List[ExtractedExpense] = []

    for index, line in enumerate(lines):
        for pattern in AMOUNT_PATTERNS:
            for match in pattern.finditer(line):
                amount = clean_amount(match.group(1))
                if amount is None or not (MIN_EXPENSE_AMOUNT < amount < MAX_EXPENSE_AMOUNT):
                    continue

                expenses.append(ExtractedExpense(
                    description=extract_description(lines, index) or line,
                    amount=amount,
                    date=extract_date(lines, index),
                    vendor=extract_vendor(line),
                ))

    unique = deduplicate(expenses)
    logger.info(f"Extracted {len(unique)} expenses ({len(expenses) - len(unique)} duplicates dropped)")

    return ExtractionResult(
        expenses=unique,
        confidence=calculate_confidence(unique),
        errors=[] if unique else ["No valid expenses found in document"],
    )


def to_candidates(
    expenses: List[ExtractedExpense],
    default_date: dt.date,
) -> Tuple[List[CandidateTransaction], List[str]]:
    """
    Convert extracted expenses into candidate transactions.
    Expenses without a parseable date take default_date.
    """
    candidates: List[CandidateTransaction] = []
    errors: List[str] = []

    for position, expense in enumerate(expenses, start=1):
        description = expense.description.strip()
        if len(description) < 3:
            errors.append(f"Expense {position}: Description too short")
            continue
        candidates.append(CandidateTransaction(
            description=description,
            amount=expense.amount,
            date=parse_date(expense.date) or default_date,
            raw_fields=expense.model_dump(),
        ))

    return candidates, errors


def extract_text_from_pdf(pdf_path: str) -> str:
    """
    Extract text from every page of a PDF, keeping line breaks.

    Returns:
        Page texts joined by blank lines, or "" if the file is unreadable
    """
    path = Path(pdf_path)
    if not path.exists():
        logger.error(f"PDF not found: {pdf_path}")
        return ""

    pages = []
    try:
        with pdfplumber.open(str(path)) as pdf:
            for i, page in enumerate(pdf.pages, start=1):
                try:
                    pages.append(page.extract_text() or "")
                except Exception as e:
                    logger.warning(f"Failed to extract page {i} of {path.name}: {e}")
                    pages.append("")
    except Exception as e:
        logger.error(f"Failed to open PDF {pdf_path}: {e}")
        return ""

    return "\n\n".join(pages)
