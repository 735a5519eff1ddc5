"""
Transaction ingestion service.
Drives an upload batch through parse -> classify -> calculate -> persist.
"""
import asyncio
import datetime as dt
import uuid
from typing import List, Optional

from core.config import get_settings
from core.db import Database, get_db
from core.emissions import EmissionCalculator
from core.exceptions import BatchStateError
from core.exporters import create_output_filename, export_to_excel
from core.extraction import extract_expenses, to_candidates
from core.logger import setup_logger
from core.parsing import parse_csv, validate_csv_structure
from core.schema import (
    CandidateTransaction,
    ClassificationResult,
    LedgerTransaction,
    TransactionCorrection,
    UploadBatch,
)
from llm.classify import Classifier, get_classifier

logger = setup_logger(__name__)

NO_VALID_ROWS_MESSAGE = "No valid transactions found in file"
NO_EXPENSES_MESSAGE = "No valid expenses found in document"


class TransactionService:
    """Service for turning uploaded expense records into ledger transactions."""

    def __init__(
        self,
        db: Optional[Database] = None,
        classifier: Optional[Classifier] = None,
        calculator: Optional[EmissionCalculator] = None
    ):
        """Initialize transaction service; collaborators default to the app singletons."""
        self.settings = get_settings()
        self.db = db or get_db()
        self.classifier = classifier or get_classifier()
        self.calculator = calculator or EmissionCalculator(self.db, self.settings)

    def create_upload(self, filename: str, file_size: int, user_id: Optional[str] = None) -> UploadBatch:
        """Register a new batch in the processing state."""
        upload_id = str(uuid.uuid4())
        return self.db.create_upload(upload_id, user_id or self.settings.default_user_id, filename, file_size)

    async def classify_transactions(
        self,
        candidates: List[CandidateTransaction]
    ) -> List[ClassificationResult]:
        """
        Classify candidates in fixed-size groups.

        Each group runs concurrently in the thread pool; groups are separated
        by a delay to respect the remote rate limit.

        Args:
            candidates: Transactions to classify

        Returns:
            One classification per candidate, in input order
        """
        batch_size = self.settings.classification_batch_size
        delay = self.settings.classification_batch_delay
        total = len(candidates)
        results: List[ClassificationResult] = []
        loop = asyncio.get_running_loop()

        for start in range(0, total, batch_size):
            group = candidates[start:start + batch_size]
            tasks = [
                loop.run_in_executor(None, self.classifier.classify, c.description, c.amount)
                for c in group
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

            for candidate, outcome in zip(group, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Classification failed for '{candidate.description}': {outcome}")
                    outcome = ClassificationResult(
                        confidence=0.1,
                        reasoning="Classification unavailable, manual review required",
                    )
                results.append(outcome)

            logger.info(f"Progress: {len(results)}/{total} transactions classified")

            if start + batch_size < total and delay > 0:
                await asyncio.sleep(delay)

        return results

    def build_ledger_rows(
        self,
        upload_id: str,
        user_id: str,
        candidates: List[CandidateTransaction],
        classifications: List[ClassificationResult]
    ) -> List[LedgerTransaction]:
        """Attach emissions to each classified candidate."""
        rows = []
        for candidate, classification in zip(candidates, classifications):
            calculation = self.calculator.calculate(
                classification.category,
                classification.subcategory,
                candidate.amount,
                classification.scope,
            )
            rows.append(LedgerTransaction(
                user_id=user_id,
                upload_id=upload_id,
                description=candidate.description,
                amount=candidate.amount,
                date=candidate.date,
                category=classification.category,
                subcategory=classification.subcategory,
                scope=classification.scope,
                confidence=classification.confidence,
                reasoning=classification.reasoning,
                emissions_factor=calculation.emissions_factor,
                emission_unit=calculation.unit,
                factor_source=calculation.source,
                factor_confidence=calculation.confidence,
                co2_emissions=calculation.co2_emissions,
                ai_classified=classification.ai_classified,
                verified=classification.confidence > self.settings.verification_threshold,
                raw_fields=candidate.raw_fields,
            ))
        return rows

    def _fail(self, upload_id: str, message: str, row_errors: Optional[List[str]] = None) -> UploadBatch:
        try:
            return self.db.fail_upload(upload_id, message, row_errors)
        except BatchStateError as e:
            logger.warning(f"Could not mark upload {upload_id} as failed: {e.message}")
            return self.db.get_upload(upload_id)

    async def ingest_candidates(
        self,
        upload_id: str,
        user_id: str,
        candidates: List[CandidateTransaction],
        row_errors: List[str],
        total_rows: int,
        empty_message: str = NO_VALID_ROWS_MESSAGE
    ) -> UploadBatch:
        """Classify, score and persist the valid candidates of a batch."""
        self.db.update_upload_progress(upload_id, total_rows, row_errors)

        if not candidates:
            logger.warning(f"Upload {upload_id}: no valid rows out of {total_rows}")
            return self._fail(upload_id, empty_message, row_errors)

        logger.info(f"Upload {upload_id}: classifying {len(candidates)} transactions")
        classifications = await self.classify_transactions(candidates)
        rows = self.build_ledger_rows(upload_id, user_id, candidates, classifications)

        inserted = self.db.insert_transactions(rows)
        batch = self.db.complete_upload(upload_id, inserted)
        logger.info(f"Upload {upload_id} completed: {inserted}/{total_rows} rows, {len(row_errors)} row errors")
        return batch

    async def process_csv_upload(
        self,
        upload_id: str,
        raw_text: str,
        user_id: Optional[str] = None
    ) -> UploadBatch:
        """
        Process a delimited-text upload batch.

        Structural failures abort before any row work. Row failures are
        recorded and skipped. Any unexpected error marks the batch failed.

        Args:
            upload_id: Batch identifier (already created)
            raw_text: Decoded file contents
            user_id: Owner of the ledger rows

        Returns:
            Final batch state
        """
        user_id = user_id or self.settings.default_user_id
        try:
            structure = validate_csv_structure(raw_text)
            if not structure.is_valid:
                logger.warning(f"Upload {upload_id} failed structural validation: {structure.errors}")
                return self._fail(upload_id, "; ".join(structure.errors))

            parsed = parse_csv(raw_text)
            return await self.ingest_candidates(
                upload_id, user_id, parsed.transactions, parsed.errors, parsed.total_rows
            )

        except Exception as e:
            logger.error(f"Upload {upload_id} failed: {e}", exc_info=True)
            return self._fail(upload_id, f"Processing failed: {e}")

    async def process_document_upload(
        self,
        upload_id: str,
        text: str,
        user_id: Optional[str] = None,
        upload_date: Optional[dt.date] = None
    ) -> UploadBatch:
        """
        Process an upload whose content is free document text.

        Expenses without a recognizable date take the upload date.
        """
        user_id = user_id or self.settings.default_user_id
        upload_date = upload_date or dt.date.today()
        try:
            loop = asyncio.get_running_loop()
            extraction = await loop.run_in_executor(None, extract_expenses, text)
            logger.info(
                f"Upload {upload_id}: extracted {len(extraction.expenses)} expenses "
                f"(confidence {extraction.confidence:.2f})"
            )
            candidates, errors = to_candidates(extraction.expenses, upload_date)
            return await self.ingest_candidates(
                upload_id, user_id, candidates, errors, len(extraction.expenses),
                empty_message=NO_EXPENSES_MESSAGE,
            )

        except Exception as e:
            logger.error(f"Upload {upload_id} failed: {e}", exc_info=True)
            return self._fail(upload_id, f"Processing failed: {e}")

    def correct_transaction(self, transaction_id: int, correction: TransactionCorrection) -> LedgerTransaction:
        """
        Apply a manual reclassification and recompute emissions.
        A corrected row counts as verified.
        """
        txn = self.db.get_transaction(transaction_id)
        calculation = self.calculator.calculate(
            correction.category, correction.subcategory, txn.amount, correction.scope
        )
        updated = txn.model_copy(update={
            "category": correction.category,
            "subcategory": correction.subcategory,
            "scope": correction.scope,
            "confidence": 1.0,
            "reasoning": "Manually corrected",
            "emissions_factor": calculation.emissions_factor,
            "emission_unit": calculation.unit,
            "factor_source": calculation.source,
            "factor_confidence": calculation.confidence,
            "co2_emissions": calculation.co2_emissions,
            "ai_classified": False,
            "verified": True,
        })
        logger.info(f"Transaction {transaction_id} corrected to {correction.category} (scope {correction.scope})")
        return self.db.update_transaction(updated)

    def verify_transaction(self, transaction_id: int) -> LedgerTransaction:
        """Mark a row as confirmed by a human reviewer."""
        txn = self.db.get_transaction(transaction_id)
        return self.db.update_transaction(txn.model_copy(update={"verified": True}))

    def export_transactions(
        self,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> str:
        """Export the user's ledger to a timestamped Excel file."""
        transactions = self.db.get_transactions(user_id or self.settings.default_user_id, start_date, end_date)
        output_path = create_output_filename("ledger", "xlsx", self.settings.temp_storage_path)
        return export_to_excel(transactions, output_path)
