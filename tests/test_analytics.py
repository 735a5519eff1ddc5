"""
Unit tests for the ledger analytics functions.
"""
import datetime as dt

import pytest

from core.analytics import (
    calculate_trends,
    carbon_budget,
    carbon_costs,
    carbon_intensity,
    category_breakdown,
    classify_change,
    monthly_emissions,
    reduction_opportunities,
    scope_analysis,
    sector_benchmark,
    summarize,
    top_transactions,
    trailing_months,
)
from core.schema import LedgerTransaction


def txn(co2, scope=3, date=dt.date(2024, 3, 10), category="Business Travel", description="Ryanair"):
    return LedgerTransaction(
        user_id="u1",
        upload_id="b1",
        description=description,
        amount=100.0,
        date=date,
        category=category,
        scope=scope,
        co2_emissions=co2,
    )


@pytest.fixture
def ledger():
    return [
        txn(80.0, scope=1, category="Fuel and Energy", description="Shell"),
        txn(90.0, scope=2, category="Energy", description="EDF"),
        txn(60.0, scope=3, category="Business Travel", description="Ryanair"),
        txn(20.0, scope=3, category="Purchased Goods", description="Office Depot"),
    ]


def test_summarize(ledger):
    summary = summarize(ledger)

    assert summary.total_emissions == pytest.approx(250.0)
    assert summary.scope1_emissions == pytest.approx(80.0)
    assert summary.scope2_emissions == pytest.approx(90.0)
    assert summary.scope3_emissions == pytest.approx(80.0)
    assert summary.transaction_count == 4


def test_summarize_empty():
    summary = summarize([])
    assert summary.total_emissions == 0.0
    assert summary.transaction_count == 0


def test_trailing_months_crosses_year():
    assert trailing_months(dt.date(2024, 2, 15), 3) == ["2023-12", "2024-01", "2024-02"]


def test_monthly_emissions_buckets(ledger):
    old = txn(500.0, date=dt.date(2022, 1, 1))
    buckets = monthly_emissions(ledger + [old], months=2, as_of=dt.date(2024, 3, 31))

    assert [b.month for b in buckets] == ["2024-02", "2024-03"]
    assert buckets[0].total_emissions == 0.0
    assert buckets[1].total_emissions == pytest.approx(250.0)
    assert buckets[1].scope2 == pytest.approx(90.0)


@pytest.mark.parametrize("change, expected", [
    (6.0, "increasing"),
    (5.0, "increasing"),
    (4.9, "stable"),
    (-4.9, "stable"),
    (-5.0, "decreasing"),
    (0.0, "stable"),
])
def test_classify_change(change, expected):
    assert classify_change(change) == expected


def test_calculate_trends():
    transactions = [
        txn(100.0, date=dt.date(2024, 1, 5)),
        txn(106.0, date=dt.date(2024, 2, 5)),
        txn(50.0, date=dt.date(2024, 4, 5)),
    ]
    trends = calculate_trends(transactions, periods=4, as_of=dt.date(2024, 4, 30))

    assert [t.period for t in trends] == ["2024-01", "2024-02", "2024-03", "2024-04"]
    assert trends[0].trend == "stable"
    assert trends[1].percentage_change == pytest.approx(6.0)
    assert trends[1].trend == "increasing"
    assert trends[2].percentage_change == pytest.approx(-100.0)
    assert trends[2].trend == "decreasing"
    # previous month empty
    assert trends[3].percentage_change == 0.0
    assert trends[3].trend == "stable"


def test_carbon_intensity(ledger):
    assert carbon_intensity(ledger, 1000.0).intensity == pytest.approx(0.25)
    assert carbon_intensity(ledger, 0.0).intensity == 0.0


def test_carbon_budget_projection():
    """400 kg by April 10th (day 100) projects 1460 kg over a 365-day year."""
    transactions = [
        txn(400.0, date=dt.date(2023, 2, 1)),
        txn(999.0, date=dt.date(2022, 12, 31)),
    ]
    budget = carbon_budget(transactions, 1000.0, as_of=dt.date(2023, 4, 10))

    assert budget.current_emissions == pytest.approx(400.0)
    assert budget.remaining_budget == pytest.approx(600.0)
    assert budget.projected_annual == pytest.approx(1460.0)
    assert budget.on_track is False
    assert budget.days_remaining == 265


def test_carbon_budget_remaining_never_negative():
    budget = carbon_budget([txn(1500.0, date=dt.date(2023, 1, 2))], 1000.0, as_of=dt.date(2023, 12, 31))
    assert budget.remaining_budget == 0.0
    assert budget.days_remaining == 0


@pytest.mark.parametrize("revenue, percentile, performance", [
    (1400.0, 90, "above_average"),   # 0.179 vs 0.45
    (500.0, 50, "average"),          # 0.5 vs 0.45
    (100.0, 10, "below_average"),    # 2.5 vs 0.45
])
def test_sector_benchmark_buckets(ledger, revenue, percentile, performance):
    result = sector_benchmark(ledger, revenue, "Manufacturing")

    assert result.matched_sector == "manufacturing"
    assert result.average_intensity == 0.45
    assert result.percentile == percentile
    assert result.performance == performance


def test_sector_benchmark_unknown_sector_uses_default(ledger):
    result = sector_benchmark(ledger, 1000.0, "Underwater Basket Weaving")
    assert result.matched_sector == "default"
    assert result.average_intensity == 0.25


def test_scope_analysis_percentages(ledger):
    analysis = scope_analysis(ledger)

    assert analysis.scope3.total == pytest.approx(80.0)
    assert [c.category for c in analysis.scope3.categories] == ["Business Travel", "Purchased Goods"]
    assert analysis.scope3.categories[0].percentage == pytest.approx(75.0)
    assert analysis.scope1.categories[0].percentage == pytest.approx(100.0)


def test_reduction_opportunities_threshold_and_order():
    transactions = [
        txn(300.0, scope=1, category="Fuel and Energy"),
        txn(200.0, scope=2, category="Energy"),
        txn(150.0, category="Business Travel"),
        txn(100.0, category="Business Travel", date=dt.date(2024, 3, 11)),
        txn(500.0, category="Purchased Goods"),
    ]
    opportunities = reduction_opportunities(transactions, threshold=200.0)

    # Energy at exactly the threshold is skipped; Purchased Goods has no template
    assert [o.category for o in opportunities] == ["Business Travel", "Fuel and Energy"]
    assert opportunities[0].potential_reduction == pytest.approx(125.0)
    assert opportunities[1].potential_reduction == pytest.approx(90.0)


def test_carbon_costs(ledger):
    costs = carbon_costs(ledger, 100.0, dt.date(2024, 1, 1), dt.date(2024, 1, 31))

    assert costs.total_cost == pytest.approx(25.0)
    assert costs.cost_by_scope == {"scope1": 8.0, "scope2": 9.0, "scope3": 8.0}
    # period shorter than a month counts as one month
    assert costs.monthly_average == pytest.approx(25.0)
    assert costs.projected_annual == pytest.approx(300.0)


def test_top_transactions(ledger):
    top = top_transactions(ledger, scope=3, limit=1)
    assert [t.description for t in top] == ["Ryanair"]


def test_category_breakdown(ledger):
    breakdown = category_breakdown(ledger)

    assert breakdown[0].name == "Energy"
    assert breakdown[0].scope == 2
    assert breakdown[0].description == "1 transaction(s) classified as Energy"
