"""
Custom exceptions for the ingestion and emissions pipeline.
"""
from typing import Any, Dict, Optional


class CarbonLedgerException(Exception):
    """Base exception for all carbon ledger errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FileProcessingError(CarbonLedgerException):
    """Raised when processing an uploaded file fails."""
    pass


class ValidationError(CarbonLedgerException):
    """Raised when data validation fails."""
    pass


class ParsingError(CarbonLedgerException):
    """Raised when tabular input fails structural validation."""
    pass


class LLMError(CarbonLedgerException):
    """Raised when the remote classification call fails."""
    pass


class EmissionsError(CarbonLedgerException):
    """Raised when emission factor resolution fails."""
    pass


class ExportError(CarbonLedgerException):
    """Raised when the ledger export fails."""
    pass


class ReportGenerationError(CarbonLedgerException):
    """Raised when a report document cannot be rendered."""
    pass


class ConfigurationError(CarbonLedgerException):
    """Raised when configuration is invalid."""
    pass


class DataNotFoundError(CarbonLedgerException):
    """Raised when required data is not found."""
    pass


class BatchStateError(CarbonLedgerException):
    """Raised on an illegal upload batch status transition."""
    pass


class FactorDatabaseError(CarbonLedgerException):
    """Raised when the remote emission factor database call fails."""
    pass
