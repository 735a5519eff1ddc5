"""
Service layer for business logic.

This package contains service classes that orchestrate the ingestion
pipeline (parsing, classification, emission calculation, persistence),
the ledger analytics and report generation.
"""
