"""
Unit tests for emission factor resolution and CO2e calculation.
"""
import pytest

from core.emissions import (
    DEFAULT_EMISSION_FACTORS,
    EmissionCalculator,
    default_factor_key,
    factor_confidence,
    initialize_default_emission_factors,
)
from core.schema import EmissionFactor


@pytest.fixture
def calculator(db):
    return EmissionCalculator(db=db)


@pytest.mark.parametrize("category, subcategory, amount, scope, expected", [
    ("Fuel and Energy", "Vehicle Fuel", 45.0, 1, 80.61),
    ("Energy", "Electricity", 120.0, 2, 92.64),
    ("Energy", "Natural Gas", 100.0, 2, 73.6),
    ("Business Travel", "Air Travel", 150.0, 3, 58.5),
    ("Business Travel", "Accommodation", 200.0, 3, 48.6),
    ("Purchased Goods", "Office Supplies", 100.0, 3, 50.0),
    ("Purchased Services", "IT Services", 100.0, 3, 10.0),
])
def test_default_factors(calculator, category, subcategory, amount, scope, expected):
    """Spend is converted to activity units before the factor applies, except for per-EUR factors."""
    result = calculator.calculate(category, subcategory, amount, scope)

    assert result.co2_emissions == pytest.approx(expected)
    assert result.source == "DEFRA 2024"
    assert result.confidence == "high"


def test_unmatched_category_uses_generic_factor(calculator):
    result = calculator.calculate("Other", "Miscellaneous", 100.0, 3)

    assert result.co2_emissions == pytest.approx(15.0)
    assert result.emissions_factor == 0.15
    assert result.source == "Generic estimate"
    assert result.confidence == "low"


def test_generic_factor_per_scope(calculator):
    assert calculator.calculate("Mystery", None, 100.0, 1).co2_emissions == pytest.approx(30.0)
    assert calculator.calculate("Mystery", None, 100.0, 2).co2_emissions == pytest.approx(20.0)


def test_stored_factor_takes_priority(db, calculator):
    db.get_or_create_emission_factor(EmissionFactor(
        category="Fuel and Energy",
        subcategory="Vehicle Fuel",
        scope=1,
        factor=3.0,
        unit="kg CO2e per litre",
        source="Climatiq",
        year=2025,
    ))
    result = calculator.calculate("Fuel and Energy", "Vehicle Fuel", 45.0, 1)

    assert result.co2_emissions == pytest.approx(90.0)
    assert result.source == "Climatiq"
    assert result.confidence == "high"


def test_default_factor_is_stored_once(db, calculator):
    first = calculator.resolve_factor("Energy", "Electricity")
    second = calculator.resolve_factor("Energy", "Electricity")

    assert first.id is not None
    assert first.id == second.id
    assert len([f for f in db.get_emission_factors() if f.category == "Energy"]) == 1


def test_calculation_failure_degrades_to_fallback(calculator):
    class BrokenDb:
        def get_emission_factor(self, category, subcategory=None):
            raise RuntimeError("database is locked")

    calculator.db = BrokenDb()
    result = calculator.calculate("Energy", "Electricity", 100.0, 2)

    assert result.source == "Fallback estimate"
    assert result.co2_emissions == pytest.approx(20.0)
    assert result.confidence == "low"


@pytest.mark.parametrize("source, expected", [
    ("DEFRA 2024", "high"),
    ("Climatiq API", "high"),
    ("Default factors", "medium"),
    ("Supplier estimate", "low"),
])
def test_factor_confidence(source, expected):
    assert factor_confidence(source) == expected


@pytest.mark.parametrize("category, subcategory, key", [
    ("Business Travel", "Accommodation", "hotel_night"),
    ("Business Travel", "Ground Transport", "taxi_km"),
    ("Business Travel", "Air Travel", "flight_international"),
    ("Business Travel", "Domestic flight", "flight_domestic"),
    ("Fuel", "Petrol", "fuel_petrol"),
    ("Waste", "Waste Treatment", "waste_general"),
    ("Transportation", "Freight", None),
])
def test_default_factor_key(category, subcategory, key):
    assert default_factor_key(category, subcategory) == key


def test_seeding_runs_once(db):
    assert initialize_default_emission_factors(db) == len(DEFAULT_EMISSION_FACTORS)
    assert initialize_default_emission_factors(db) == 0
    assert db.count_emission_factors() == len(DEFAULT_EMISSION_FACTORS)
