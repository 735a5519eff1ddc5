"""
Read-side service: loads a user's ledger snapshot and runs the analytics.
"""
import datetime as dt
from typing import List, Optional

from core import analytics
from core.config import get_settings
from core.db import Database, get_db
from core.schema import (
    CarbonBudget,
    CarbonCost,
    CarbonIntensity,
    EmissionTrend,
    EmissionsSummary,
    LedgerTransaction,
    MonthlyEmissions,
    ReductionOpportunity,
    ScopeAnalysis,
    SectorBenchmark,
)


class AnalyticsService:
    """Analytics over committed ledger rows. Read-only."""

    def __init__(self, db: Optional[Database] = None):
        self.settings = get_settings()
        self.db = db or get_db()

    def transactions(
        self,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> List[LedgerTransaction]:
        return self.db.get_transactions(user_id or self.settings.default_user_id, start_date, end_date)

    def summary(
        self,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> EmissionsSummary:
        return analytics.summarize(self.transactions(user_id, start_date, end_date))

    def monthly_trend(
        self,
        user_id: Optional[str] = None,
        months: int = 12,
        as_of: Optional[dt.date] = None
    ) -> List[MonthlyEmissions]:
        return analytics.monthly_emissions(self.transactions(user_id), months, as_of)

    def trends(
        self,
        user_id: Optional[str] = None,
        periods: int = 12,
        as_of: Optional[dt.date] = None
    ) -> List[EmissionTrend]:
        return analytics.calculate_trends(self.transactions(user_id), periods, as_of)

    def carbon_intensity(
        self,
        revenue: float,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> CarbonIntensity:
        return analytics.carbon_intensity(self.transactions(user_id, start_date, end_date), revenue)

    def carbon_budget(
        self,
        annual_target: float,
        user_id: Optional[str] = None,
        as_of: Optional[dt.date] = None
    ) -> CarbonBudget:
        return analytics.carbon_budget(self.transactions(user_id), annual_target, as_of)

    def benchmark(
        self,
        revenue: float,
        sector: str,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> SectorBenchmark:
        return analytics.sector_benchmark(self.transactions(user_id, start_date, end_date), revenue, sector)

    def scope_analysis(
        self,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> ScopeAnalysis:
        return analytics.scope_analysis(self.transactions(user_id, start_date, end_date))

    def reduction_opportunities(
        self,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> List[ReductionOpportunity]:
        return analytics.reduction_opportunities(
            self.transactions(user_id, start_date, end_date),
            threshold=self.settings.materiality_threshold_kg,
        )

    def carbon_costs(
        self,
        carbon_price: Optional[float] = None,
        user_id: Optional[str] = None,
        start_date: Optional[dt.date] = None,
        end_date: Optional[dt.date] = None
    ) -> CarbonCost:
        price = carbon_price if carbon_price is not None else self.settings.default_carbon_price
        return analytics.carbon_costs(
            self.transactions(user_id, start_date, end_date), price, start_date, end_date
        )
