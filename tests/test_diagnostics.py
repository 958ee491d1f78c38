from __future__ import annotations

import math

import pytest

from fairprice.domain.models.financials import FinancialSeries
from fairprice.domain.services.calculations import (
    FundamentalsCalculator,
    ReliabilityScorer,
    RiskProfiler,
    derive_eps,
    yearly_roe,
)


def series_with_eps(*eps: float) -> FinancialSeries:
    years = [str(2024 - i) for i in range(len(eps))]
    return FinancialSeries(
        years=years,
        eps_by_year={year: value for year, value in zip(years, eps) if value is not None},
    )


def full_series() -> FinancialSeries:
    return FinancialSeries(
        years=["2024", "2023", "2022"],
        eps_by_year={"2024": 1000.0, "2023": 800.0, "2022": 600.0},
        revenue_by_year={"2024": 100_000.0, "2023": 90_000.0, "2022": 81_000.0},
        operating_income_by_year={"2024": 12_000.0, "2023": 10_000.0, "2022": 8_000.0},
        net_income_by_year={"2024": 10_000.0, "2023": 8_000.0, "2022": 6_000.0},
        equity_by_year={"2024": 100_000.0, "2023": 90_000.0, "2022": 80_000.0},
        total_assets=200_000.0,
        equity=100_000.0,
        current_assets=50_000.0,
        current_liabilities=30_000.0,
        interest_expense=1_000.0,
    )


def test_reliability_full_history_scores_ten():
    result = ReliabilityScorer().score(full_series())
    assert result.score == 10
    assert result.message.startswith("High confidence")


@pytest.mark.parametrize(
    "eps, expected, prefix",
    [
        ((100.0, None), 6, "Moderate"),
        ((-100.0, 300.0), 3, "Low"),
        ((100.0, -50.0, 40.0), 6, "Moderate"),
        ((100.0, 0.0, 90.0), 9, "High"),
    ],
)
def test_reliability_deductions(eps, expected, prefix):
    result = ReliabilityScorer().score(series_with_eps(*eps))
    assert result.score == expected
    assert result.message.startswith(prefix)


def test_reliability_never_drops_below_zero():
    years = [str(2024 - i) for i in range(10)]
    series = FinancialSeries(years=years, eps_by_year={years[0]: -20.0, years[1]: -5.0})
    result = ReliabilityScorer().score(series)
    assert result.score == 0
    assert result.message.startswith("Low")

    single = FinancialSeries(years=["2024"], eps_by_year={"2024": -5.0})
    assert ReliabilityScorer().score(single).score == 5
    empty = FinancialSeries(years=["2024", "2023"], eps_by_year={})
    assert ReliabilityScorer().score(empty).score == 5
    assert ReliabilityScorer().score(FinancialSeries()).score == 7


def test_risk_levels_follow_eps_volatility():
    stable = RiskProfiler().profile(full_series())
    assert stable.level == "Low"

    medium = RiskProfiler().profile(series_with_eps(100.0, 10.0, 100.0))
    assert medium.level == "Medium"
    assert abs(medium.score - 0.303) < 1e-3

    high = RiskProfiler().profile(series_with_eps(100.0, -100.0, 100.0))
    assert high.level == "High"


def test_yearly_roe_skips_unusable_years():
    series = full_series()
    series.equity_by_year["2023"] = -5.0
    series.net_income_by_year["2022"] = 0.0
    assert yearly_roe(series) == pytest.approx([10.0])


def test_fundamentals_snapshot():
    snapshot = FundamentalsCalculator().calculate(full_series(), price=12_000.0, shares=10.0)

    assert abs(snapshot.growth_rates["revenue"] - 1.0 / 9.0) < 1e-4
    assert abs(snapshot.growth_rates["eps"] - 0.29099) < 1e-4
    assert snapshot.growth_rates["retained_earnings"] == 0.0
    assert abs(snapshot.average_operating_margin - 10.996) < 1e-3
    assert abs(snapshot.average_roe - 8.7963) < 1e-3
    assert abs(snapshot.debt_ratio - 100.0) < 1e-9
    assert abs(snapshot.current_ratio - 500.0 / 3.0) < 1e-6
    assert abs(snapshot.interest_coverage - 12.0) < 1e-9
    assert abs(snapshot.pbr - 1.2) < 1e-9
    assert snapshot.gross_margin == 0.0
    assert snapshot.cash_conversion_days == 0.0


def test_fundamentals_growth_uses_only_positive_points():
    series = full_series()
    series.net_income_by_year = {"2024": 10_000.0, "2023": -2_000.0, "2022": 6_000.0}
    snapshot = FundamentalsCalculator().calculate(series, price=12_000.0, shares=10.0)
    assert abs(snapshot.growth_rates["net_income"] - 2.0 / 3.0) < 1e-6


def test_fundamentals_tolerate_missing_shares_and_statements():
    snapshot = FundamentalsCalculator().calculate(FinancialSeries(), price=0.0, shares=0.0)
    assert snapshot.pbr == 0.0
    assert all(math.isfinite(v) for v in snapshot.growth_rates.values())
    assert snapshot.debt_ratio == 0.0


def test_derive_eps_from_net_income():
    series = full_series()
    series.eps_by_year = {}
    derived = derive_eps(series, 10.0)

    assert derived.eps_by_year == {"2024": 1000.0, "2023": 800.0, "2022": 600.0}
    assert derived is not series
    assert series.eps_by_year == {}


def test_derive_eps_leaves_series_alone_when_not_applicable():
    reported = full_series()
    assert derive_eps(reported, 10.0) is reported

    no_eps = full_series()
    no_eps.eps_by_year = {}
    assert derive_eps(no_eps, 0.0) is no_eps
