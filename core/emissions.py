"""
Emission factor resolution and spend-based CO2e calculation.

Lookup order: the Climatiq factor database when configured, then the stored
factor for the exact category/subcategory, then the built-in default table
(stored on first use), then a generic per-scope factor. Monetary amounts are converted to activity units (litres, kWh,
km, nights) with fixed price ratios before the factor is applied; the
ratios are rough averages, not measured values.
"""
from typing import Dict, List, Optional, Tuple

from core.climatiq import ClimatiqClient, get_factor_client
from core.config import Settings, get_settings
from core.db import Database, get_db
from core.exceptions import EmissionsError, FactorDatabaseError
from core.logger import setup_logger
from core.schema import EmissionCalculation, EmissionFactor, RemoteEmissionFactor

logger = setup_logger(__name__)

DEFAULT_FACTOR_SOURCE = "DEFRA 2024"
DEFAULT_FACTOR_YEAR = 2024
REMOTE_FACTOR_SOURCE = "Climatiq"
MONETARY_UNIT = "kg CO2e per €"

# DEFRA 2024 conversion factors
DEFAULT_EMISSION_FACTORS: Dict[str, Dict] = {
    "fuel_diesel": {"category": "Fuel", "subcategory": "Diesel", "factor": 2.687, "unit": "kg CO2e per litre", "scope": 1},
    "fuel_petrol": {"category": "Fuel", "subcategory": "Petrol", "factor": 2.315, "unit": "kg CO2e per litre", "scope": 1},
    "electricity_uk": {"category": "Electricity", "subcategory": "UK Grid", "factor": 0.193, "unit": "kg CO2e per kWh", "scope": 2},
    "natural_gas": {"category": "Natural Gas", "subcategory": None, "factor": 0.184, "unit": "kg CO2e per kWh", "scope": 2},
    "flight_domestic": {"category": "Flight", "subcategory": "Domestic", "factor": 0.255, "unit": "kg CO2e per km", "scope": 3},
    "flight_international": {"category": "Flight", "subcategory": "International", "factor": 0.195, "unit": "kg CO2e per km", "scope": 3},
    "hotel_night": {"category": "Hotel", "subcategory": "Night", "factor": 24.3, "unit": "kg CO2e per night", "scope": 3},
    "taxi_km": {"category": "Taxi", "subcategory": None, "factor": 0.211, "unit": "kg CO2e per km", "scope": 3},
    "office_supplies": {"category": "Office Supplies", "subcategory": None, "factor": 0.5, "unit": MONETARY_UNIT, "scope": 3},
    "consulting_services": {"category": "Consulting Services", "subcategory": None, "factor": 0.1, "unit": MONETARY_UNIT, "scope": 3},
    "waste_general": {"category": "Waste", "subcategory": "General", "factor": 0.475, "unit": "kg CO2e per kg", "scope": 3},
}

# kg CO2e per currency unit when no factor can be resolved
GENERIC_SCOPE_FACTORS: Dict[int, float] = {1: 0.3, 2: 0.2, 3: 0.15}
GENERIC_FALLBACK_FACTOR = 0.2

AUTHORITATIVE_SOURCE_TAGS = ("DEFRA", "Climatiq")
SEEDED_SOURCE_TAGS = ("default",)


def default_factor_key(category: str, subcategory: Optional[str] = None) -> Optional[str]:
    """
    Map a free-form category/subcategory onto a default-table key.

    Returns:
        Key into DEFAULT_EMISSION_FACTORS, or None when nothing applies
    """
    cat = (category or "").lower()
    sub = (subcategory or "").lower()
    is_travel = "travel" in cat or "flight" in cat

    if "hotel" in cat or "accommodation" in cat or (is_travel and ("hotel" in sub or "accommodation" in sub)):
        return "hotel_night"

    if "taxi" in cat or "uber" in cat or (is_travel and ("taxi" in sub or "ground" in sub)):
        return "taxi_km"

    if "fuel" in cat:
        if "petrol" in sub or "gasoline" in sub:
            return "fuel_petrol"
        return "fuel_diesel"

    if "electricity" in cat or "energy" in cat or "gas" in cat:
        if "gas" in sub or "heating" in sub or ("gas" in cat and "electricity" not in cat):
            return "natural_gas"
        return "electricity_uk"

    if is_travel:
        if "domestic" in sub:
            return "flight_domestic"
        return "flight_international"

    if "office" in cat or "supplies" in cat or "purchased goods" in cat:
        return "office_supplies"

    if "consulting" in cat or "services" in cat:
        return "consulting_services"

    if "waste" in cat:
        return "waste_general"

    return None


def activity_divisor(
    category: str,
    subcategory: Optional[str],
    settings: Settings
) -> Tuple[Optional[float], str]:
    """
    Price per activity unit used to turn spend into physical quantity.

    Returns:
        (divisor, activity unit) or (None, "EUR") for spend-based factors
    """
    cat = (category or "").lower()
    sub = (subcategory or "").lower()

    if "hotel" in cat or "accommodation" in cat or "hotel" in sub or "accommodation" in sub:
        return settings.hotel_cost_per_night, "night"
    if "fuel" in cat:
        return settings.fuel_price_per_litre, "litre"
    if "electricity" in cat or "energy" in cat:
        return settings.energy_price_per_kwh, "kWh"
    if "travel" in cat or "flight" in cat:
        return settings.travel_cost_per_km, "km"
    return None, "EUR"


def is_monetary_unit(unit: str) -> bool:
    unit_lower = (unit or "").lower()
    return "€" in unit_lower or "eur" in unit_lower or "currency" in unit_lower


def factor_confidence(source: str) -> str:
    """'high' for authoritative databases, 'medium' for seeded defaults, else 'low'."""
    source = source or ""
    if any(tag.lower() in source.lower() for tag in AUTHORITATIVE_SOURCE_TAGS):
        return "high"
    if any(tag in source.lower() for tag in SEEDED_SOURCE_TAGS):
        return "medium"
    return "low"


def generic_factor(scope: int) -> float:
    return GENERIC_SCOPE_FACTORS.get(scope, GENERIC_FALLBACK_FACTOR)


def default_factor_records() -> List[EmissionFactor]:
    """Default table as storable records."""
    return [
        EmissionFactor(
            category=data["category"],
            subcategory=data["subcategory"],
            scope=data["scope"],
            factor=data["factor"],
            unit=data["unit"],
            source=DEFAULT_FACTOR_SOURCE,
            year=DEFAULT_FACTOR_YEAR,
            description=f"Default {key.replace('_', ' ')} emission factor",
        )
        for key, data in DEFAULT_EMISSION_FACTORS.items()
    ]


def to_emission_factor(
    remote: RemoteEmissionFactor,
    category: str,
    subcategory: Optional[str],
    scope: int
) -> EmissionFactor:
    """Remote record as a factor for our category/subcategory; the upstream source goes in the description."""
    return EmissionFactor(
        category=category,
        subcategory=subcategory,
        scope=scope,
        factor=remote.factor,
        unit=remote.unit,
        source=REMOTE_FACTOR_SOURCE,
        year=remote.year or DEFAULT_FACTOR_YEAR,
        description=f"{remote.name} ({remote.source}, id {remote.id})",
    )


def initialize_default_emission_factors(db: Optional[Database] = None) -> int:
    """Seed the reference table once when it is empty."""
    db = db or get_db()
    try:
        return db.seed_emission_factors(default_factor_records())
    except Exception as e:
        logger.error(f"Error initializing emission factors: {e}", exc_info=True)
        return 0


class EmissionCalculator:
    """Turns a classified spend amount into kg CO2e."""

    def __init__(
        self,
        db: Optional[Database] = None,
        settings: Optional[Settings] = None,
        factor_client: Optional[ClimatiqClient] = None
    ):
        self.db = db or get_db()
        self.settings = settings or get_settings()
        self.factor_client = factor_client if factor_client is not None else get_factor_client()

    def remote_factor(self, category: str, subcategory: Optional[str], scope: int) -> Optional[EmissionFactor]:
        """Best Climatiq factor for the key, or None when unconfigured, unmatched or failing."""
        if self.factor_client is None:
            return None
        try:
            remote = self.factor_client.find_best_emission_factor(category, subcategory)
            if remote is None:
                return None
            return to_emission_factor(remote, category, subcategory, scope)
        except Exception as e:
            logger.warning(f"Remote factor lookup failed for {category}/{subcategory}, using local factors: {e}")
            return None

    def resolve_factor(
        self,
        category: str,
        subcategory: Optional[str] = None,
        scope: int = 3
    ) -> Optional[EmissionFactor]:
        """
        Remote factor when available, else the stored factor for the exact
        key, else the default-table factor stored under this
        category/subcategory on first use.
        """
        factor = self.remote_factor(category, subcategory, scope)
        if factor:
            return factor

        factor = self.db.get_emission_factor(category, subcategory)
        if factor:
            return factor

        key = default_factor_key(category, subcategory)
        if key is None:
            return None

        data = DEFAULT_EMISSION_FACTORS[key]
        logger.debug(f"Creating default factor '{key}' for {category}/{subcategory}")
        try:
            return self.db.get_or_create_emission_factor(EmissionFactor(
                category=category,
                subcategory=subcategory,
                scope=data["scope"],
                factor=data["factor"],
                unit=data["unit"],
                source=DEFAULT_FACTOR_SOURCE,
                year=DEFAULT_FACTOR_YEAR,
                description=f"Default factor for {category}" + (f" - {subcategory}" if subcategory else ""),
            ))
        except Exception as e:
            raise EmissionsError(
                f"Failed to store default emission factor '{key}'",
                details={"category": category, "subcategory": subcategory, "error": str(e)}
            )

    def apply_factor(self, category: str, subcategory: Optional[str], amount: float, factor: EmissionFactor) -> float:
        if is_monetary_unit(factor.unit):
            return amount * factor.factor

        divisor, _ = activity_divisor(category, subcategory, self.settings)
        if divisor is None:
            return amount * factor.factor
        return (amount / divisor) * factor.factor

    def generic_calculation(self, amount: float, scope: int, source: str) -> EmissionCalculation:
        factor = generic_factor(scope)
        return EmissionCalculation(
            co2_emissions=round(max(amount, 0.0) * factor, 3),
            emissions_factor=factor,
            unit=MONETARY_UNIT,
            source=source,
            confidence="low",
        )

    def calculate(
        self,
        category: str,
        subcategory: Optional[str],
        amount: float,
        scope: int
    ) -> EmissionCalculation:
        """
        Calculate emissions for one transaction. Never raises.

        Args:
            category: Classified category
            subcategory: Classified subcategory (optional)
            amount: Spend in currency units
            scope: GHG scope (1, 2 or 3)

        Returns:
            EmissionCalculation in kg CO2e
        """
        try:
            factor = self.resolve_factor(category, subcategory, scope)
            if factor is None:
                return self.generic_calculation(amount, scope, "Generic estimate")

            emissions = self.apply_factor(category, subcategory, amount, factor)
            return EmissionCalculation(
                co2_emissions=round(max(emissions, 0.0), 3),
                emissions_factor=factor.factor,
                unit=factor.unit,
                source=factor.source,
                confidence=factor_confidence(factor.source),
            )
        except Exception as e:
            logger.warning(f"Emission calculation failed for {category}/{subcategory}, using generic factor: {e}")
            return self.generic_calculation(amount, scope, "Fallback estimate")


def local_factor_matches(
    factors: List[EmissionFactor],
    query: Optional[str] = None,
    category: Optional[str] = None
) -> List[RemoteEmissionFactor]:
    """Stored factors whose text contains query and whose category contains category."""
    query = (query or "").lower()
    category = (category or "").lower()
    matches = []
    for factor in factors:
        text = " ".join(filter(None, (factor.category, factor.subcategory, factor.description))).lower()
        if query and query not in text:
            continue
        if category and category not in factor.category.lower():
            continue
        matches.append(RemoteEmissionFactor(
            id=f"local-{factor.id}",
            name=factor.description or factor.category,
            category=factor.category,
            subcategory=factor.subcategory,
            factor=factor.factor,
            unit=factor.unit,
            year=factor.year,
            source=factor.source,
        ))
    return matches


def search_emission_factors(
    query: Optional[str] = None,
    category: Optional[str] = None,
    region: Optional[str] = None,
    year: Optional[int] = None,
    limit: int = 20,
    db: Optional[Database] = None,
    factor_client: Optional[ClimatiqClient] = None
) -> List[RemoteEmissionFactor]:
    """
    Search the Climatiq database when configured, else (or on failure) the stored factors.

    Returns:
        At most limit factor records
    """
    client = factor_client if factor_client is not None else get_factor_client()
    if client is not None:
        try:
            return client.search_emission_factors(
                query=query, category=category, region=region, year=year, limit=limit
            )[:limit]
        except FactorDatabaseError as e:
            logger.warning(f"Remote factor search failed, searching stored factors: {e.message}")

    db = db or get_db()
    return local_factor_matches(db.get_emission_factors(), query, category)[:limit]
