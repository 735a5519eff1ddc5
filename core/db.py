"""
SQLite persistence for emission factors, upload batches, ledger rows and reports.
Every call opens its own connection so background tasks share no state.
"""
import json
import sqlite3
import threading
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from core.config import get_settings
from core.exceptions import BatchStateError, DataNotFoundError
from core.logger import setup_logger
from core.schema import (
    BatchStatus,
    EmissionFactor,
    LedgerTransaction,
    Report,
    UploadBatch,
)

logger = setup_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS emission_factors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category TEXT NOT NULL,
    subcategory TEXT,
    scope INTEGER NOT NULL,
    factor REAL NOT NULL,
    unit TEXT NOT NULL,
    source TEXT NOT NULL,
    year INTEGER NOT NULL,
    description TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_emission_factors_key
    ON emission_factors (category, IFNULL(subcategory, ''), year);

CREATE TABLE IF NOT EXISTS uploads (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    filename TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'processing',
    total_rows INTEGER NOT NULL DEFAULT 0,
    processed_rows INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    row_errors TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    upload_id TEXT NOT NULL REFERENCES uploads(id),
    description TEXT NOT NULL,
    amount REAL NOT NULL,
    date TEXT NOT NULL,
    category TEXT NOT NULL,
    subcategory TEXT,
    scope INTEGER NOT NULL,
    confidence REAL NOT NULL DEFAULT 0,
    reasoning TEXT,
    emissions_factor REAL NOT NULL DEFAULT 0,
    emission_unit TEXT,
    factor_source TEXT,
    factor_confidence TEXT,
    co2_emissions REAL NOT NULL DEFAULT 0,
    ai_classified INTEGER NOT NULL DEFAULT 0,
    verified INTEGER NOT NULL DEFAULT 0,
    raw_fields TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_transactions_user_date ON transactions (user_id, date);
CREATE INDEX IF NOT EXISTS ix_transactions_upload ON transactions (upload_id);

CREATE TABLE IF NOT EXISTS reports (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL,
    report_type TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT NOT NULL,
    total_emissions REAL NOT NULL DEFAULT 0,
    scope1_emissions REAL NOT NULL DEFAULT 0,
    scope2_emissions REAL NOT NULL DEFAULT 0,
    scope3_emissions REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'generating',
    file_path TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL
);
"""

TRANSACTION_COLUMNS = (
    "user_id", "upload_id", "description", "amount", "date", "category",
    "subcategory", "scope", "confidence", "reasoning", "emissions_factor",
    "emission_unit", "factor_source", "factor_confidence", "co2_emissions",
    "ai_classified", "verified", "raw_fields", "created_at",
)

REPORT_UPDATABLE = {"status", "file_path", "error_message"}

_seed_lock = threading.Lock()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().database_path

    def get_connection(self) -> sqlite3.Connection:
        """Create a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Initialize database tables."""
        conn = self.get_connection()
        try:
            conn.executescript(SCHEMA)
            conn.commit()
            logger.info(f"Database initialized at {self.db_path}")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise
        finally:
            conn.close()

    # Emission factors

    @staticmethod
    def _row_to_factor(row: sqlite3.Row) -> EmissionFactor:
        return EmissionFactor(**dict(row))

    def get_emission_factors(self) -> List[EmissionFactor]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM emission_factors ORDER BY category, subcategory, year DESC"
            ).fetchall()
            return [self._row_to_factor(row) for row in rows]
        finally:
            conn.close()

    def count_emission_factors(self) -> int:
        conn = self.get_connection()
        try:
            return conn.execute("SELECT COUNT(*) FROM emission_factors").fetchone()[0]
        finally:
            conn.close()

    def get_emission_factor(
        self,
        category: str,
        subcategory: Optional[str] = None
    ) -> Optional[EmissionFactor]:
        """Most recent factor (by year) matching category and subcategory exactly."""
        conn = self.get_connection()
        try:
            row = conn.execute(
                """
                SELECT * FROM emission_factors
                WHERE category = ? AND subcategory IS ?
                ORDER BY year DESC, id ASC
                LIMIT 1
                """,
                (category, subcategory),
            ).fetchone()
            return self._row_to_factor(row) if row else None
        finally:
            conn.close()

    def get_or_create_emission_factor(self, factor: EmissionFactor) -> EmissionFactor:
        """
        Insert a factor unless one already exists for the same key.
        Returns the stored record, which is the first one on repeated calls.
        """
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT OR IGNORE INTO emission_factors
                    (category, subcategory, scope, factor, unit, source, year, description)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    factor.category, factor.subcategory, factor.scope, factor.factor,
                    factor.unit, factor.source, factor.year, factor.description,
                ),
            )
            conn.commit()
            row = conn.execute(
                """
                SELECT * FROM emission_factors
                WHERE category = ? AND subcategory IS ? AND year = ?
                """,
                (factor.category, factor.subcategory, factor.year),
            ).fetchone()
            return self._row_to_factor(row)
        except Exception as e:
            logger.error(f"Failed to store emission factor {factor.category}/{factor.subcategory}: {e}")
            raise
        finally:
            conn.close()

    def seed_emission_factors(self, factors: Iterable[EmissionFactor]) -> int:
        """
        Insert reference factors once, only when the table is empty.

        Returns:
            Number of factors inserted (0 if the table was already populated)
        """
        with _seed_lock:
            if self.count_emission_factors() > 0:
                return 0
            inserted = 0
            for factor in factors:
                self.get_or_create_emission_factor(factor)
                inserted += 1
            logger.info(f"Seeded {inserted} default emission factors")
            return inserted

    # Upload batches

    @staticmethod
    def _row_to_upload(row: sqlite3.Row) -> UploadBatch:
        data = dict(row)
        data["row_errors"] = json.loads(data.get("row_errors") or "[]")
        return UploadBatch(**data)

    def create_upload(self, upload_id: str, user_id: str, filename: str, file_size: int) -> UploadBatch:
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO uploads (id, user_id, filename, file_size, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (upload_id, user_id, filename, file_size, BatchStatus.PROCESSING.value, _now()),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_upload(upload_id)

    def get_upload(self, upload_id: str) -> UploadBatch:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM uploads WHERE id = ?", (upload_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise DataNotFoundError(f"Upload {upload_id} not found", details={"upload_id": upload_id})
        return self._row_to_upload(row)

    def list_uploads(self, user_id: str) -> List[UploadBatch]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM uploads WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
            return [self._row_to_upload(row) for row in rows]
        finally:
            conn.close()

    def update_upload_progress(
        self,
        upload_id: str,
        total_rows: int,
        row_errors: Optional[List[str]] = None
    ) -> None:
        """Record row counts while the batch is still processing."""
        self._update_processing_upload(
            upload_id,
            {"total_rows": total_rows, "row_errors": json.dumps(row_errors or [])},
        )

    def complete_upload(self, upload_id: str, processed_rows: int) -> UploadBatch:
        self._update_processing_upload(
            upload_id,
            {
                "status": BatchStatus.COMPLETED.value,
                "processed_rows": processed_rows,
                "completed_at": _now(),
            },
        )
        return self.get_upload(upload_id)

    def fail_upload(self, upload_id: str, error_message: str, row_errors: Optional[List[str]] = None) -> UploadBatch:
        fields: Dict[str, Any] = {
            "status": BatchStatus.FAILED.value,
            "error_message": error_message,
            "completed_at": _now(),
        }
        if row_errors is not None:
            fields["row_errors"] = json.dumps(row_errors)
        self._update_processing_upload(upload_id, fields)
        return self.get_upload(upload_id)

    def _update_processing_upload(self, upload_id: str, fields: Dict[str, Any]) -> None:
        """
        Update a batch that is still processing.

        Raises:
            DataNotFoundError: If the batch does not exist
            BatchStateError: If the batch already reached a terminal state
        """
        assignments = ", ".join(f"{column} = ?" for column in fields)
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                f"UPDATE uploads SET {assignments} WHERE id = ? AND status = ?",
                (*fields.values(), upload_id, BatchStatus.PROCESSING.value),
            )
            conn.commit()
            updated = cursor.rowcount
        finally:
            conn.close()

        if updated == 0:
            current = self.get_upload(upload_id)
            raise BatchStateError(
                f"Upload {upload_id} is already {current.status.value}",
                details={"upload_id": upload_id, "status": current.status.value},
            )

    # Ledger transactions

    @staticmethod
    def _transaction_values(txn: LedgerTransaction) -> tuple:
        return (
            txn.user_id, txn.upload_id, txn.description, txn.amount, txn.date.isoformat(),
            txn.category, txn.subcategory, txn.scope, txn.confidence, txn.reasoning,
            txn.emissions_factor, txn.emission_unit, txn.factor_source, txn.factor_confidence,
            txn.co2_emissions, int(txn.ai_classified), int(txn.verified),
            json.dumps(txn.raw_fields, default=str), txn.created_at or _now(),
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> LedgerTransaction:
        data = dict(row)
        data["ai_classified"] = bool(data["ai_classified"])
        data["verified"] = bool(data["verified"])
        data["raw_fields"] = json.loads(data.get("raw_fields") or "{}")
        return LedgerTransaction(**data)

    def insert_transactions(self, transactions: List[LedgerTransaction]) -> int:
        """Insert a batch's ledger rows in a single SQL transaction."""
        if not transactions:
            return 0

        placeholders = ", ".join("?" for _ in TRANSACTION_COLUMNS)
        conn = self.get_connection()
        try:
            conn.executemany(
                f"INSERT INTO transactions ({', '.join(TRANSACTION_COLUMNS)}) VALUES ({placeholders})",
                [self._transaction_values(txn) for txn in transactions],
            )
            conn.commit()
            return len(transactions)
        except Exception as e:
            conn.rollback()
            logger.error(f"Failed to insert {len(transactions)} transactions: {e}")
            raise
        finally:
            conn.close()

    def get_transactions(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        upload_id: Optional[str] = None,
    ) -> List[LedgerTransaction]:
        """Ledger rows for a user, newest first, optionally date-bounded (inclusive)."""
        query = "SELECT * FROM transactions WHERE user_id = ?"
        params: List[Any] = [user_id]
        if start_date:
            query += " AND date >= ?"
            params.append(start_date.isoformat())
        if end_date:
            query += " AND date <= ?"
            params.append(end_date.isoformat())
        if upload_id:
            query += " AND upload_id = ?"
            params.append(upload_id)
        query += " ORDER BY date DESC, id DESC"

        conn = self.get_connection()
        try:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_transaction(row) for row in rows]
        finally:
            conn.close()

    def get_transaction(self, transaction_id: int) -> LedgerTransaction:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise DataNotFoundError(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": transaction_id},
            )
        return self._row_to_transaction(row)

    def update_transaction(self, txn: LedgerTransaction) -> LedgerTransaction:
        """Persist a corrected ledger row."""
        if txn.id is None:
            raise DataNotFoundError("Cannot update a transaction without an id")

        columns = [c for c in TRANSACTION_COLUMNS if c != "created_at"]
        assignments = ", ".join(f"{column} = ?" for column in columns)
        values = self._transaction_values(txn)[:-1]

        conn = self.get_connection()
        try:
            conn.execute(f"UPDATE transactions SET {assignments} WHERE id = ?", (*values, txn.id))
            conn.commit()
        finally:
            conn.close()
        return self.get_transaction(txn.id)

    # Reports

    @staticmethod
    def _row_to_report(row: sqlite3.Row) -> Report:
        return Report(**dict(row))

    def create_report(self, report: Report) -> Report:
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO reports (
                    id, user_id, title, report_type, start_date, end_date,
                    total_emissions, scope1_emissions, scope2_emissions, scope3_emissions,
                    status, file_path, error_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    report.id, report.user_id, report.title, report.report_type,
                    report.start_date.isoformat(), report.end_date.isoformat(),
                    report.total_emissions, report.scope1_emissions,
                    report.scope2_emissions, report.scope3_emissions,
                    report.status, report.file_path, report.error_message,
                    report.created_at or _now(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_report(report.id)

    def get_report(self, report_id: str) -> Report:
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT * FROM reports WHERE id = ?", (report_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise DataNotFoundError(f"Report {report_id} not found", details={"report_id": report_id})
        return self._row_to_report(row)

    def list_reports(self, user_id: str) -> List[Report]:
        conn = self.get_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM reports WHERE user_id = ? ORDER BY created_at DESC",
                (user_id,),
            ).fetchall()
            return [self._row_to_report(row) for row in rows]
        finally:
            conn.close()

    def update_report(self, report_id: str, **fields: Any) -> Report:
        unknown = set(fields) - REPORT_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update report fields: {sorted(unknown)}")

        assignments = ", ".join(f"{column} = ?" for column in fields)
        conn = self.get_connection()
        try:
            conn.execute(
                f"UPDATE reports SET {assignments} WHERE id = ?",
                (*fields.values(), report_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_report(report_id)


# Global DB instance
_db: Optional[Database] = None


def get_db() -> Database:
    global _db
    if _db is None:
        _db = Database()
        _db.init_db()
    return _db


def reset_db() -> None:
    """Drop the singleton (useful for testing)."""
    global _db
    _db = None
