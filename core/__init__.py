"""
Core processing modules for the carbon emissions ledger.

This package contains:
- analytics: Summary, trend, budget, benchmark and cost calculations
- config: Application configuration and settings
- db: Database access layer
- emissions: Emission factor resolution and CO2e calculation
- exceptions: Custom exception classes
- exporters: Excel ledger export
- extraction: Expense extraction from document text
- logger: Logging configuration
- matching: Fuzzy sector-name matching
- normalize: Amount and date normalization
- parsing: Delimited-text parsing
- reports: Narrative PDF report
- schema: Pydantic models for data validation
- xbrl: Structured XBRL report and validator
"""
