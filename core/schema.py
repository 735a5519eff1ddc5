"""
Pydantic schemas for pipeline records, ledger rows and analytics views.
Classification results tolerate partial or malformed classifier output.
"""
import datetime as dt
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field


VALID_SCOPES = (1, 2, 3)

DEFAULT_CATEGORY = "Unknown"
DEFAULT_SCOPE = 3
DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASONING = "Classification based on transaction description"


def normalize_category(v):
    """Substitute the unknown category for empty or non-string values."""
    if v is None or not isinstance(v, str) or not v.strip():
        return DEFAULT_CATEGORY
    return v.strip()


def normalize_subcategory(v):
    """Map empty strings and literal 'null' to None."""
    if v is None:
        return None
    v = str(v).strip()
    if not v or v.lower() in ("null", "none", "n/a"):
        return None
    return v


def normalize_scope(v):
    """Coerce scope to 1, 2 or 3; anything else becomes scope 3."""
    try:
        scope = int(v)
    except (TypeError, ValueError):
        return DEFAULT_SCOPE
    return scope if scope in VALID_SCOPES else DEFAULT_SCOPE


def clamp_confidence(v):
    """Clamp confidence into [0, 1]; unparseable values get the default."""
    try:
        value = float(v)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if value != value:  # NaN
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, value))


def normalize_reasoning(v):
    if v is None or not str(v).strip():
        return DEFAULT_REASONING
    return str(v).strip()


class CandidateTransaction(BaseModel):
    """Structurally valid transaction produced by the parser or extractor."""
    description: str = Field(..., min_length=3)
    amount: float = Field(..., gt=0)
    date: dt.date
    raw_fields: Dict[str, Any] = Field(default_factory=dict)


class ParseResult(BaseModel):
    """Outcome of parsing one delimited upload."""
    transactions: List[CandidateTransaction] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    total_rows: int = 0
    valid_rows: int = 0


class StructureValidation(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class ExtractedExpense(BaseModel):
    """Expense found in free document text."""
    description: str
    amount: float
    date: Optional[str] = None
    vendor: Optional[str] = None


class ExtractionResult(BaseModel):
    expenses: List[ExtractedExpense] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    errors: List[str] = Field(default_factory=list)


class ClassificationResult(BaseModel):
    """
    Scope/category assignment for one transaction.

    Every field has a safe default and a normalizer so that a partial
    classifier response still yields a usable result.
    """
    category: Annotated[str, BeforeValidator(normalize_category)] = DEFAULT_CATEGORY
    subcategory: Annotated[Optional[str], BeforeValidator(normalize_subcategory)] = None
    scope: Annotated[int, BeforeValidator(normalize_scope)] = DEFAULT_SCOPE
    confidence: Annotated[float, BeforeValidator(clamp_confidence)] = DEFAULT_CONFIDENCE
    reasoning: Annotated[str, BeforeValidator(normalize_reasoning)] = DEFAULT_REASONING
    ai_classified: bool = False


class EmissionFactor(BaseModel):
    """Reference conversion ratio for a category/subcategory."""
    id: Optional[int] = None
    category: str
    subcategory: Optional[str] = None
    scope: int = Field(..., ge=1, le=3)
    factor: float = Field(..., gt=0)
    unit: str
    source: str
    year: int
    description: Optional[str] = None


class RemoteEmissionFactor(BaseModel):
    """Factor record returned by an emission factor search."""
    id: str
    name: str
    category: str
    subcategory: Optional[str] = None
    factor: float
    unit: str
    region: Optional[str] = None
    year: Optional[int] = None
    source: str
    uncertainty: Optional[float] = None


class EmissionCalculation(BaseModel):
    co2_emissions: float = Field(..., ge=0, description="kg CO2e")
    emissions_factor: float
    unit: str
    source: str
    confidence: Literal["high", "medium", "low"]


class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadBatch(BaseModel):
    id: str
    user_id: str
    filename: str
    file_size: int = 0
    status: BatchStatus = BatchStatus.PROCESSING
    total_rows: int = 0
    processed_rows: int = 0
    error_message: Optional[str] = None
    row_errors: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class LedgerTransaction(BaseModel):
    """Classified, emission-scored transaction owned by one upload batch."""
    id: Optional[int] = None
    user_id: str
    upload_id: str
    description: str
    amount: float
    date: dt.date
    category: str
    subcategory: Optional[str] = None
    scope: int = Field(..., ge=1, le=3)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: Optional[str] = None
    emissions_factor: float = 0.0
    emission_unit: Optional[str] = None
    factor_source: Optional[str] = None
    factor_confidence: Optional[str] = None
    co2_emissions: float = Field(default=0.0, ge=0)
    ai_classified: bool = False
    verified: bool = False
    raw_fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None


class TransactionCorrection(BaseModel):
    """Manual reclassification of a ledger row."""
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    scope: int = Field(..., ge=1, le=3)


# Analytics views. Recomputed per query, never persisted.

class EmissionsSummary(BaseModel):
    total_emissions: float = 0.0
    scope1_emissions: float = 0.0
    scope2_emissions: float = 0.0
    scope3_emissions: float = 0.0
    transaction_count: int = 0


class MonthlyEmissions(BaseModel):
    month: str
    total_emissions: float = 0.0
    scope1: float = 0.0
    scope2: float = 0.0
    scope3: float = 0.0


class EmissionTrend(BaseModel):
    period: str
    emissions: float
    percentage_change: float
    trend: Literal["increasing", "decreasing", "stable"]


class CarbonIntensity(BaseModel):
    total_emissions: float
    revenue: float
    intensity: float
    unit: str = "kg CO2e/EUR"


class CarbonBudget(BaseModel):
    annual_target: float
    current_emissions: float
    remaining_budget: float
    projected_annual: float
    on_track: bool
    days_remaining: int


class SectorBenchmark(BaseModel):
    sector: str
    matched_sector: str
    average_intensity: float
    company_intensity: float
    percentile: int
    performance: Literal["above_average", "average", "below_average"]


class CategoryEmissions(BaseModel):
    category: str
    emissions: float
    percentage: float


class ScopeBreakdown(BaseModel):
    total: float = 0.0
    categories: List[CategoryEmissions] = Field(default_factory=list)


class ScopeAnalysis(BaseModel):
    scope1: ScopeBreakdown
    scope2: ScopeBreakdown
    scope3: ScopeBreakdown


class ReductionOpportunity(BaseModel):
    category: str
    current_emissions: float
    potential_reduction: float
    cost: float
    roi: float
    effort: Literal["low", "medium", "high"]
    impact: Literal["low", "medium", "high"]
    recommendation: str


class CarbonCost(BaseModel):
    carbon_price: float
    total_cost: float
    cost_by_scope: Dict[str, float]
    monthly_average: float
    projected_annual: float


# Reports

class CategoryBreakdown(BaseModel):
    name: str
    scope: int
    emissions: float
    description: str


class XBRLData(BaseModel):
    """Snapshot rendered into the structured report document."""
    entity_name: str
    entity_identifier: str
    currency: str = "EUR"
    start_date: dt.date
    end_date: dt.date
    summary: EmissionsSummary
    categories: List[CategoryBreakdown] = Field(default_factory=list)
    framework: str = "GHG Protocol Corporate Standard"
    emission_factors_source: str = "DEFRA 2024"
    calculation_method: str = "Spend-based approach with AI classification"


class XBRLValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class ReportRequest(BaseModel):
    title: str = Field(default="GHG Emissions Report", min_length=1)
    start_date: dt.date
    end_date: dt.date
    company_name: str = "Reporting Company"
    entity_identifier: str = "ENTITY-001"
    currency: str = "EUR"


class Report(BaseModel):
    id: str
    user_id: str
    title: str
    report_type: Literal["pdf", "xbrl"]
    start_date: dt.date
    end_date: dt.date
    total_emissions: float = 0.0
    scope1_emissions: float = 0.0
    scope2_emissions: float = 0.0
    scope3_emissions: float = 0.0
    status: Literal["generating", "completed", "failed"] = "generating"
    file_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
