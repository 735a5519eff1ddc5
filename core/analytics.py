"""
Aggregation and analytics over ledger transactions.

All functions are pure: they take the transaction list (already scoped to
a user and, where relevant, a date range) plus explicit constant tables,
and return view models. Nothing here is persisted.
"""
import calendar
import datetime as dt
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from core.logger import setup_logger
from core.matching import DEFAULT_SECTOR, match_sector
from core.schema import (
    CarbonBudget,
    CarbonCost,
    CarbonIntensity,
    CategoryBreakdown,
    CategoryEmissions,
    EmissionTrend,
    EmissionsSummary,
    LedgerTransaction,
    MonthlyEmissions,
    ReductionOpportunity,
    ScopeAnalysis,
    ScopeBreakdown,
    SectorBenchmark,
)

logger = setup_logger(__name__)

# Average carbon intensity per sector (kg CO2e per EUR revenue)
SECTOR_AVERAGE_INTENSITY: Dict[str, float] = {
    "manufacturing": 0.45,
    "technology": 0.12,
    "retail": 0.18,
    "finance": 0.08,
    "healthcare": 0.22,
    "construction": 0.65,
    "transportation": 0.85,
    "energy": 1.20,
    "agriculture": 0.55,
    "hospitality": 0.35,
    DEFAULT_SECTOR: 0.25,
}

# (max intensity ratio, percentile, performance); first matching row wins
BENCHMARK_BUCKETS = (
    (0.8, 90, "above_average"),
    (1.2, 50, "average"),
    (float("inf"), 10, "below_average"),
)

REDUCTION_OPPORTUNITY_TEMPLATES: Dict[str, Dict] = {
    "Fuel and Energy": {
        "reduction": 0.3,
        "cost": 5000,
        "roi": 2.5,
        "effort": "medium",
        "impact": "high",
        "recommendation": "Switch to electric vehicles and optimize route planning",
    },
    "Energy": {
        "reduction": 0.4,
        "cost": 3000,
        "roi": 3.2,
        "effort": "low",
        "impact": "high",
        "recommendation": "Switch to renewable energy supplier and improve energy efficiency",
    },
    "Business Travel": {
        "reduction": 0.5,
        "cost": 1000,
        "roi": 4.1,
        "effort": "low",
        "impact": "medium",
        "recommendation": "Implement virtual meeting policy and carbon-conscious travel booking",
    },
}

TREND_STABLE_THRESHOLD = 5.0  # percent, exclusive
DAYS_PER_MONTH = 30.44
SCOPE_KEYS = {1: "scope1", 2: "scope2", 3: "scope3"}


def filter_by_date(
    transactions: Iterable[LedgerTransaction],
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None
) -> List[LedgerTransaction]:
    """Keep transactions dated within [start_date, end_date] (either bound optional)."""
    return [
        t for t in transactions
        if (start_date is None or t.date >= start_date) and (end_date is None or t.date <= end_date)
    ]


def scope_totals(transactions: Iterable[LedgerTransaction]) -> Dict[int, float]:
    totals = {1: 0.0, 2: 0.0, 3: 0.0}
    for t in transactions:
        totals[t.scope] = totals.get(t.scope, 0.0) + t.co2_emissions
    return totals


def summarize(transactions: List[LedgerTransaction]) -> EmissionsSummary:
    """Total emissions, split by scope, plus transaction count."""
    totals = scope_totals(transactions)
    return EmissionsSummary(
        total_emissions=round(sum(totals.values()), 3),
        scope1_emissions=round(totals[1], 3),
        scope2_emissions=round(totals[2], 3),
        scope3_emissions=round(totals[3], 3),
        transaction_count=len(transactions),
    )


def month_key(value: dt.date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def trailing_months(as_of: dt.date, periods: int) -> List[str]:
    """Month keys for the last `periods` calendar months ending at as_of, oldest first."""
    keys = []
    year, month = as_of.year, as_of.month
    for _ in range(max(periods, 0)):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def monthly_emissions(
    transactions: List[LedgerTransaction],
    months: int = 12,
    as_of: Optional[dt.date] = None
) -> List[MonthlyEmissions]:
    """Per-month totals split by scope over the trailing window."""
    as_of = as_of or dt.date.today()
    buckets = {key: MonthlyEmissions(month=key) for key in trailing_months(as_of, months)}

    for t in transactions:
        bucket = buckets.get(month_key(t.date))
        if bucket is None:
            continue
        bucket.total_emissions += t.co2_emissions
        scope_field = SCOPE_KEYS.get(t.scope)
        if scope_field:
            setattr(bucket, scope_field, getattr(bucket, scope_field) + t.co2_emissions)

    return list(buckets.values())


def classify_change(percentage_change: float) -> str:
    """'stable' when |change| < 5%, otherwise direction of the change."""
    if abs(percentage_change) < TREND_STABLE_THRESHOLD:
        return "stable"
    return "increasing" if percentage_change > 0 else "decreasing"


def calculate_trends(
    transactions: List[LedgerTransaction],
    periods: int = 12,
    as_of: Optional[dt.date] = None
) -> List[EmissionTrend]:
    """
    Month-over-month emission trend for the trailing periods.

    A bucket following an empty bucket reports 0% change ("stable").

    Args:
        transactions: Ledger rows
        periods: Number of monthly buckets
        as_of: Last day of the window (defaults to today)

    Returns:
        One EmissionTrend per month, oldest first
    """
    trends: List[EmissionTrend] = []
    previous: Optional[float] = None

    for bucket in monthly_emissions(transactions, periods, as_of):
        emissions = bucket.total_emissions
        change = 0.0
        if previous is not None and previous > 0:
            change = (emissions - previous) / previous * 100

        trends.append(EmissionTrend(
            period=bucket.month,
            emissions=round(emissions, 3),
            percentage_change=round(change, 2),
            trend=classify_change(change),
        ))
        previous = emissions

    return trends


def carbon_intensity(transactions: List[LedgerTransaction], revenue: float) -> CarbonIntensity:
    total = sum(t.co2_emissions for t in transactions)
    intensity = total / revenue if revenue > 0 else 0.0
    return CarbonIntensity(
        total_emissions=round(total, 3),
        revenue=revenue,
        intensity=round(intensity, 6),
    )


def carbon_budget(
    transactions: List[LedgerTransaction],
    annual_target: float,
    as_of: Optional[dt.date] = None
) -> CarbonBudget:
    """
    Year-to-date position against an annual emissions target.

    The projection extrapolates the year-to-date daily rate linearly to
    the full calendar year.

    Args:
        transactions: Ledger rows (any dates; filtered to the current year)
        annual_target: Target in kg CO2e
        as_of: Reference day (defaults to today)

    Returns:
        CarbonBudget
    """
    as_of = as_of or dt.date.today()
    year_start = dt.date(as_of.year, 1, 1)
    year_end = dt.date(as_of.year, 12, 31)
    days_in_year = 366 if calendar.isleap(as_of.year) else 365
    days_elapsed = (as_of - year_start).days + 1

    ytd = sum(t.co2_emissions for t in filter_by_date(transactions, year_start, as_of))
    projected = ytd / days_elapsed * days_in_year

    return CarbonBudget(
        annual_target=annual_target,
        current_emissions=round(ytd, 3),
        remaining_budget=round(max(0.0, annual_target - ytd), 3),
        projected_annual=round(projected, 3),
        on_track=projected <= annual_target,
        days_remaining=(year_end - as_of).days,
    )


def sector_benchmark(
    transactions: List[LedgerTransaction],
    revenue: float,
    sector: str,
    averages: Optional[Dict[str, float]] = None
) -> SectorBenchmark:
    """
    Compare company intensity with the sector average.

    Three coarse buckets only: ratio <= 0.8 is top decile, <= 1.2 is
    average, anything above is bottom decile.
    """
    averages = averages or SECTOR_AVERAGE_INTENSITY
    match = match_sector(sector, averages.keys())
    matched = match["value"] if match["value"] in averages else DEFAULT_SECTOR
    average = averages.get(matched, SECTOR_AVERAGE_INTENSITY[DEFAULT_SECTOR])

    company = carbon_intensity(transactions, revenue).intensity
    ratio = company / average if average > 0 else 0.0

    percentile, performance = 10, "below_average"
    for max_ratio, bucket_percentile, bucket_performance in BENCHMARK_BUCKETS:
        if ratio <= max_ratio:
            percentile, performance = bucket_percentile, bucket_performance
            break

    return SectorBenchmark(
        sector=sector,
        matched_sector=matched,
        average_intensity=average,
        company_intensity=company,
        percentile=percentile,
        performance=performance,
    )


def category_totals(transactions: Iterable[LedgerTransaction]) -> Dict[str, float]:
    totals: Dict[str, float] = defaultdict(float)
    for t in transactions:
        totals[t.category] += t.co2_emissions
    return dict(totals)


def scope_analysis(transactions: List[LedgerTransaction]) -> ScopeAnalysis:
    """Per scope: total and categories by emissions (descending) with their share of the scope."""
    breakdowns = {}
    for scope, key in SCOPE_KEYS.items():
        scoped = [t for t in transactions if t.scope == scope]
        total = sum(t.co2_emissions for t in scoped)
        categories = [
            CategoryEmissions(
                category=name,
                emissions=round(emissions, 3),
                percentage=round(emissions / total * 100, 2) if total > 0 else 0.0,
            )
            for name, emissions in sorted(category_totals(scoped).items(), key=lambda item: item[1], reverse=True)
        ]
        breakdowns[key] = ScopeBreakdown(total=round(total, 3), categories=categories)
    return ScopeAnalysis(**breakdowns)


def reduction_opportunities(
    transactions: List[LedgerTransaction],
    threshold: float = 100.0,
    templates: Optional[Dict[str, Dict]] = None
) -> List[ReductionOpportunity]:
    """
    Template-driven reduction opportunities for material categories.

    Categories at or below the threshold, or without a template, are skipped.
    Sorted by ROI, highest first.
    """
    templates = templates if templates is not None else REDUCTION_OPPORTUNITY_TEMPLATES
    opportunities = []

    for category, emissions in category_totals(transactions).items():
        if emissions <= threshold:
            continue
        template = templates.get(category)
        if not template:
            continue
        opportunities.append(ReductionOpportunity(
            category=category,
            current_emissions=round(emissions, 3),
            potential_reduction=round(emissions * template["reduction"], 3),
            cost=template["cost"],
            roi=template["roi"],
            effort=template["effort"],
            impact=template["impact"],
            recommendation=template["recommendation"],
        ))

    opportunities.sort(key=lambda o: o.roi, reverse=True)
    return opportunities


def carbon_costs(
    transactions: List[LedgerTransaction],
    carbon_price: float,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None
) -> CarbonCost:
    """
    Cost of emissions at a carbon price (per tonne CO2e).

    The monthly average divides by the elapsed months of the period
    (never less than one); start defaults to January 1 of the end year.
    """
    end_date = end_date or dt.date.today()
    start_date = start_date or dt.date(end_date.year, 1, 1)

    totals = scope_totals(transactions)
    cost_by_scope = {SCOPE_KEYS[s]: round(totals[s] / 1000 * carbon_price, 2) for s in SCOPE_KEYS}
    total_cost = sum(totals.values()) / 1000 * carbon_price

    months = max(1.0, (end_date - start_date).days / DAYS_PER_MONTH)
    monthly = total_cost / months

    return CarbonCost(
        carbon_price=carbon_price,
        total_cost=round(total_cost, 2),
        cost_by_scope=cost_by_scope,
        monthly_average=round(monthly, 2),
        projected_annual=round(monthly * 12, 2),
    )


def top_transactions(
    transactions: List[LedgerTransaction],
    scope: int,
    limit: int = 10
) -> List[LedgerTransaction]:
    scoped = [t for t in transactions if t.scope == scope]
    return sorted(scoped, key=lambda t: t.co2_emissions, reverse=True)[:limit]


def category_breakdown(transactions: List[LedgerTransaction]) -> List[CategoryBreakdown]:
    """Emissions per (category, scope) pair, largest first, for report documents."""
    grouped: Dict[tuple, Dict] = {}
    for t in transactions:
        entry = grouped.setdefault((t.category, t.scope), {"emissions": 0.0, "count": 0})
        entry["emissions"] += t.co2_emissions
        entry["count"] += 1

    breakdown = [
        CategoryBreakdown(
            name=category,
            scope=scope,
            emissions=round(entry["emissions"], 3),
            description=f"{entry['count']} transaction(s) classified as {category}",
        )
        for (category, scope), entry in grouped.items()
    ]
    breakdown.sort(key=lambda c: c.emissions, reverse=True)
    return breakdown
