"""Domain service layer providing the building blocks of the valuation engine.

This module implements:
- Growth rates between the oldest and newest point of a short series, with
  explicit turnaround sentinels for sign changes
- Negative-aware period averages (EPS, ROE, operating margin/income)
- Data reliability scoring and earnings-volatility risk profiling
- A fundamentals snapshot of supporting ratios

The implementations are conservative and robust to missing data. Where a value
cannot be computed due to missing or zero denominators, the result is ``0.0``
so a single bad input never aborts a valuation.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from fairprice.domain.models.financials import (
    DataReliability,
    FinancialSeries,
    FundamentalsSnapshot,
    RiskProfile,
)

logger = logging.getLogger(__name__)

TURNAROUND_TO_PROFIT = 1.0
TURNAROUND_TO_LOSS = -1.0

# Divisor applied instead of the period count when any period is negative.
NEGATIVE_PERIOD_DIVISOR = 4.5

RELIABILITY_MESSAGES = (
    (8, "High confidence: the financial data is complete and stable."),
    (5, "Moderate confidence: additional review is recommended."),
    (0, "Low confidence: interpret the results with caution."),
)

RISK_BANDS = (
    (0.3, "Low", "Earnings are stable; the business is highly predictable."),
    (0.6, "Medium", "Earnings show a moderate level of volatility."),
)
HIGH_RISK = ("High", "Earnings are highly volatile; caution is warranted.")


def growth_rate(values: Sequence[float]) -> float:
    """Growth between ``values[0]`` (newest) and ``values[-1]`` (oldest).

    Both ends positive yields the compound rate over ``len(values) - 1``
    periods. A loss-to-profit turnaround returns ``TURNAROUND_TO_PROFIT`` and a
    profit-to-loss swing returns ``TURNAROUND_TO_LOSS`` regardless of
    magnitude. When both ends are losses the fractional narrowing of the loss
    is returned (negative if the loss widened).
    """
    if len(values) < 2:
        return 0.0
    latest = _to_float(values[0])
    oldest = _to_float(values[-1])
    if np.isnan(latest) or np.isnan(oldest):
        return 0.0

    if latest > 0 and oldest > 0:
        periods = len(values) - 1
        return (latest / oldest) ** (1.0 / periods) - 1.0
    if oldest <= 0 and latest > 0:
        return TURNAROUND_TO_PROFIT
    if oldest > 0 and latest <= 0:
        return TURNAROUND_TO_LOSS
    if oldest < 0 and latest < 0:
        return (abs(oldest) - abs(latest)) / abs(oldest)
    return 0.0


def is_turnaround(rate: float) -> bool:
    return rate in (TURNAROUND_TO_PROFIT, TURNAROUND_TO_LOSS)


def negative_aware_average(values: Iterable[Optional[float]]) -> float:
    """Average where any negative period drags the result down.

    Absent values are ignored. Negatives count as zero in the sum; if one is
    present the sum is divided by ``NEGATIVE_PERIOD_DIVISOR``, otherwise by the
    number of non-zero entries (1 when there are none).
    """
    present = [v for v in (_to_float(v) for v in values) if not np.isnan(v)]
    total = sum(v for v in present if v > 0)
    if any(v < 0 for v in present):
        return total / NEGATIVE_PERIOD_DIVISOR
    nonzero = sum(1 for v in present if v != 0)
    return total / (nonzero or 1)


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population standard deviation over the absolute mean; 0 when undefined."""
    if len(values) <= 1:
        return 0.0
    arr = np.asarray(values, dtype=float)
    mean = float(arr.mean())
    if mean == 0.0:
        return 0.0
    return float(arr.std()) / abs(mean)


def derive_eps(series: FinancialSeries, shares_outstanding: float) -> FinancialSeries:
    """Return a copy with EPS filled from net income when no EPS was reported."""
    if series.eps_by_year or not series.net_income_by_year or shares_outstanding <= 0:
        return series
    eps_by_year: Dict[str, float] = {}
    for year in series.years:
        net_income = _to_float(series.net_income_by_year.get(year))
        if not np.isnan(net_income) and net_income != 0.0:
            eps_by_year[year] = net_income / shares_outstanding
            logger.debug("Derived %s EPS %.2f from net income", year, eps_by_year[year])
    return replace(series, eps_by_year=eps_by_year)


def yearly_roe(series: FinancialSeries) -> List[float]:
    """ROE in percent for each year with non-zero net income and positive equity."""
    roes: List[float] = []
    for year in series.years:
        net_income = _to_float(series.net_income_by_year.get(year))
        equity = _to_float(series.equity_by_year.get(year))
        if np.isnan(net_income) or net_income == 0.0 or np.isnan(equity) or equity <= 0:
            continue
        roes.append(net_income / equity * 100.0)
    return roes


class ReliabilityScorer:
    """Rate completeness and stability of the EPS history on a 0-10 scale."""

    def score(self, series: FinancialSeries) -> DataReliability:
        score = 10
        years = series.years
        if len(years) < 3:
            score -= 3

        eps = [series.eps(year) for year in years]
        # A zero EPS counts as unreported.
        score -= sum(1 for value in eps if not value)
        if any(value is not None and value < 0 for value in eps):
            score -= 2
        if self._has_volatile_eps(eps):
            score -= 2

        message = RELIABILITY_MESSAGES[-1][1]
        for floor, text in RELIABILITY_MESSAGES:
            if score >= floor:
                message = text
                break
        return DataReliability(score=max(0, score), message=message)

    @staticmethod
    def _has_volatile_eps(eps: List[Optional[float]]) -> bool:
        # Oldest first so pct_change reads newer / older - 1.
        frame = pd.Series([v if v else np.nan for v in reversed(eps)], dtype=float)
        swings = frame.pct_change(fill_method=None).abs()
        return bool((swings > 0.5).any())


class RiskProfiler:
    """Classify earnings and ROE volatility into Low / Medium / High risk."""

    def profile(self, series: FinancialSeries) -> RiskProfile:
        eps_values = [v for v in (series.eps(year) for year in series.years) if v is not None]
        eps_cv = coefficient_of_variation(eps_values)
        roe_cv = coefficient_of_variation(yearly_roe(series))
        risk_score = (eps_cv + roe_cv) / 2.0

        for ceiling, level, message in RISK_BANDS:
            if risk_score < ceiling:
                return RiskProfile(level=level, score=risk_score, message=message)
        level, message = HIGH_RISK
        return RiskProfile(level=level, score=risk_score, message=message)


class FundamentalsCalculator:
    """Derive supporting growth and balance-sheet ratios from a series."""

    def calculate(self, series: FinancialSeries, price: float, shares: float) -> FundamentalsSnapshot:
        years = list(series.years[:3])

        def by_year(mapping: Dict[str, float]) -> List[float]:
            return [to_number(mapping.get(year)) for year in years]

        revenue = by_year(series.revenue_by_year)
        operating_income = by_year(series.operating_income_by_year)
        net_income = by_year(series.net_income_by_year)
        equity = by_year(series.equity_by_year)
        retained = by_year(series.retained_earnings_by_year)
        eps = [
            series.eps(year) or (safe_div(series.net_income_by_year.get(year), shares))
            for year in years
        ]
        bps = [safe_div(value, shares) for value in equity]

        # Growth is measured only across the positive points of each series.
        growth_rates = {
            name: growth_rate([v for v in values if v > 0])
            for name, values in (
                ("revenue", revenue),
                ("operating_income", operating_income),
                ("eps", eps),
                ("net_income", net_income),
                ("bps", bps),
                ("retained_earnings", retained),
            )
        }

        op_margins = [safe_div(oi, rev) * 100.0 if rev > 0 else 0.0 for oi, rev in zip(operating_income, revenue)]
        roes = [safe_div(ni, eq) * 100.0 if eq > 0 else 0.0 for ni, eq in zip(net_income, equity)]

        latest_revenue = to_number(series.revenue) or (revenue[0] if revenue else 0.0)
        latest_operating_income = to_number(series.operating_income) or (operating_income[0] if operating_income else 0.0)
        cost_of_sales = to_number(series.cost_of_sales)
        inventory_days = safe_div(series.inventories, cost_of_sales) * 365.0
        receivable_days = safe_div(series.trade_receivables, latest_revenue) * 365.0
        payable_days = safe_div(series.trade_payables, cost_of_sales) * 365.0
        total_equity = to_number(series.equity)
        current_bps = bps[0] if bps else 0.0

        return FundamentalsSnapshot(
            growth_rates=growth_rates,
            average_operating_margin=negative_aware_average(op_margins),
            average_roe=negative_aware_average(roes),
            gross_margin=safe_div(series.gross_profit, latest_revenue) * 100.0 if latest_revenue > 0 else 0.0,
            debt_ratio=safe_div(to_number(series.total_assets) - total_equity, total_equity) * 100.0
            if total_equity > 0
            else 0.0,
            current_ratio=safe_div(series.current_assets, series.current_liabilities) * 100.0,
            interest_coverage=safe_div(latest_operating_income, series.interest_expense)
            if to_number(series.interest_expense) > 0
            else 0.0,
            cash_conversion_days=inventory_days + receivable_days - payable_days,
            fcf_ratio=safe_div(series.free_cash_flow, latest_revenue) * 100.0 if latest_revenue > 0 else 0.0,
            pbr=safe_div(price, current_bps) if current_bps > 0 else 0.0,
        )


# ----------------------------
# Numeric helpers
# ----------------------------

def _to_float(value: Optional[float]) -> float:
    try:
        if value is None:
            return float("nan")
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def to_number(value: Optional[float]) -> float:
    """Finite float or ``0.0`` for absent and non-numeric input."""
    number = _to_float(value)
    return number if math.isfinite(number) else 0.0


def safe_div(numerator: Optional[float], denominator: Optional[float]) -> float:
    a = to_number(numerator)
    b = to_number(denominator)
    if b == 0.0:
        return 0.0
    return a / b
