from __future__ import annotations

import json
import math

import pytest

from fairprice.domain.models.financials import (
    FinancialSeries,
    MarketQuote,
    QuoteNotFoundError,
    UserAssumptions,
)
from fairprice.domain.services.valuation import (
    ValuationEngine,
    calculate_all_prices,
    resolve_quote,
)


def make_series() -> FinancialSeries:
    return FinancialSeries(
        years=["2024", "2023", "2022"],
        eps_by_year={"2024": 1000.0, "2023": 800.0, "2022": 600.0},
        revenue_by_year={"2024": 100_000.0, "2023": 90_000.0, "2022": 81_000.0},
        operating_income_by_year={"2024": 12_000.0, "2023": 10_000.0, "2022": 8_000.0},
        net_income_by_year={"2024": 10_000.0, "2023": 8_000.0, "2022": 6_000.0},
        equity_by_year={"2024": 100_000.0, "2023": 90_000.0, "2022": 80_000.0},
        net_income=10_000.0,
        total_assets=200_000.0,
        equity=100_000.0,
        equity_attributable_to_owners=95_000.0,
        current_assets=50_000.0,
        current_liabilities=30_000.0,
        investment_assets=5_000.0,
        non_current_liabilities=20_000.0,
        interest_expense=1_000.0,
    )


def make_quote(price: float = 12_000.0, shares: float = 10.0) -> MarketQuote:
    return MarketQuote(ticker="TEST", name="Test Corp", price=price, shares_outstanding=shares)


PRICE_HISTORY = {"2024": 10_000.0, "2023": 8_000.0, "2022": 9_000.0}


def close(a: float, b: float, tol: float = 1e-2) -> bool:
    return math.isfinite(a) and abs(a - b) < tol


def test_engine_runs_every_model():
    result = ValuationEngine().run(make_series(), make_quote(), PRICE_HISTORY)
    m = result.model_values

    assert close(result.average_eps, 800.0)
    assert close(result.average_per, 35.0 / 3.0)
    assert close(result.average_roe, (10.0 + 80.0 / 9.0 + 7.5) / 3.0, tol=1e-6)
    assert close(result.average_operating_income, 10_000.0)
    assert close(result.growth_rate, 25.0)
    assert close(result.peg_per, 25.0)

    assert close(m["eps_per"], 800.0 * 35.0 / 3.0)
    assert close(m["net_income_per"], 10_000.0)
    assert close(m["bps"], 9_500.0)
    assert close(m["eps_x10"], 8_000.0)
    assert close(m["roe_eps"], result.average_roe * 800.0)
    assert close(m["yamaguchi"], 9_275.0)
    assert close(m["peg"], 25_000.0)

    roe = result.average_roe / 100.0
    assert close(m["srim_base"], (95_000.0 + 95_000.0 * (roe - 0.08) / 0.08) / 10.0)
    assert close(m["srim_decline_10"], (95_000.0 + 95_000.0 * (roe * 0.9 - 0.08) / 0.08) / 10.0)
    assert close(m["srim_decline_20"], (95_000.0 + 95_000.0 * (roe * 0.8 - 0.08) / 0.08) / 10.0)
    assert m["srim_base"] > m["srim_decline_10"] > m["srim_decline_20"]


def test_engine_reconciles_range_and_diagnostics():
    result = calculate_all_prices(make_series(), make_quote(), PRICE_HISTORY)

    assert not result.has_outliers
    assert len(result.normal_models) == 8
    assert close(result.price_range.low, 9_275.0)
    assert close(result.price_range.mid, 9_500.0)
    assert close(result.price_range.high, result.model_values["srim_base"])

    assert result.price_signal.band == "orange"
    assert close(result.price_signal.ratio, 12_000.0 / 9_500.0, tol=1e-9)
    assert close(result.trailing_per, 12.0)
    assert result.per_status.status == "normal"
    assert result.reliability.score == 10
    assert result.risk.level == "Low"


def test_outlier_is_excluded_from_range():
    assumptions = UserAssumptions(peg_ratio=2.0)
    result = ValuationEngine().run(make_series(), make_quote(), PRICE_HISTORY, assumptions)

    assert close(result.peg_per, 50.0)
    assert [(m.model_id, m.reason) for m in result.outliers] == [("peg", "value_range")]
    assert close(result.price_range.low, 8_000.0)
    assert close(result.price_range.mid, 800.0 * 35.0 / 3.0)
    assert close(result.price_range.high, 10_000.0)


def test_reference_scenarios_are_reported_but_not_aggregated():
    result = ValuationEngine().run(make_series(), make_quote(), PRICE_HISTORY)

    reference_ids = [m.model_id for m in result.categorized.reference_only]
    assert reference_ids == ["srim_decline_10", "srim_decline_20"]
    assert all(m.is_reference for m in result.categorized.reference_only)
    calc_ids = {m.model_id for m in result.categorized.all}
    assert calc_ids.isdisjoint(reference_ids)
    assert len(calc_ids) == 8


def test_zero_shares_degrade_to_zero_without_raising():
    result = ValuationEngine().run(make_series(), make_quote(shares=0.0), PRICE_HISTORY)
    m = result.model_values

    assert m["bps"] == 0.0
    assert m["net_income_per"] == 0.0
    assert m["yamaguchi"] == 0.0
    assert m["srim_base"] == 0.0
    assert all(math.isfinite(v) for v in m.values())
    assert {o.model_id for o in result.outliers} >= {"bps", "net_income_per", "yamaguchi", "srim_base"}


def test_zero_discount_rate_and_treasury_shares_degrade_to_zero():
    no_rate = ValuationEngine().run(make_series(), make_quote(), assumptions=UserAssumptions(discount_rate=0.0))
    assert no_rate.model_values["yamaguchi"] == 0.0
    assert no_rate.model_values["srim_base"] == 0.0

    all_treasury = ValuationEngine().run(
        make_series(), make_quote(), assumptions=UserAssumptions(treasury_shares=10.0)
    )
    assert all_treasury.model_values["srim_base"] == 0.0
    assert all_treasury.model_values["bps"] == 9_500.0


def test_treasury_shares_raise_residual_income_per_share():
    base = ValuationEngine().run(make_series(), make_quote())
    with_treasury = ValuationEngine().run(
        make_series(), make_quote(), assumptions=UserAssumptions(treasury_shares=2.0)
    )
    assert close(with_treasury.model_values["srim_base"], base.model_values["srim_base"] * 10.0 / 8.0)


def test_historical_per_defaults_to_ten_without_prices():
    result = ValuationEngine().run(make_series(), make_quote())
    assert result.average_per == 10.0
    assert close(result.model_values["eps_per"], 8_000.0)


def test_historical_prices_fall_back_to_quote_lookup():
    quote = MarketQuote(
        ticker="TEST",
        name="Test Corp",
        price=12_000.0,
        shares_outstanding=10.0,
        historical_prices={"2024": 20_000.0},
    )
    result = ValuationEngine().run(make_series(), quote)
    assert close(result.average_per, 20.0)

    history = {"2024": MarketQuote(ticker="TEST", name="Test Corp", price=15_000.0)}
    result = ValuationEngine().run(make_series(), quote, history)
    assert close(result.average_per, 15.0)


def test_peg_growth_falls_back_to_two_year_cagr():
    series = make_series()
    series.eps_by_year = {"2024": 1000.0, "2022": 640.0}
    result = ValuationEngine().run(series, make_quote())
    assert close(result.growth_rate, 25.0)


def test_two_year_cagr_of_exactly_one_hundred_percent_is_kept():
    series = make_series()
    series.eps_by_year = {"2024": 400.0, "2022": 100.0}
    series.net_income_by_year = {"2024": 4_000.0, "2023": 5_000.0, "2022": 1_000.0}
    result = ValuationEngine().run(series, make_quote())

    assert close(result.growth_rate, 100.0)
    assert close(result.peg_per, 50.0)
    assert close(result.model_values["peg"], 20_000.0)


def test_peg_growth_falls_back_to_net_income_then_default():
    series = make_series()
    series.eps_by_year = {"2024": 800.0, "2023": 1000.0, "2022": 900.0}
    series.net_income_by_year = {"2024": 12_000.0, "2023": 10_000.0, "2022": 9_000.0}
    result = ValuationEngine().run(series, make_quote())
    assert close(result.growth_rate, 20.0)

    series.net_income_by_year = {"2024": 8_000.0, "2023": 10_000.0, "2022": 9_000.0}
    result = ValuationEngine().run(series, make_quote())
    assert result.growth_rate == 5.0
    assert result.peg_per == 5.0
    assert close(result.model_values["peg"], 4_000.0)


def test_eps_is_derived_from_net_income_without_mutating_input():
    series = make_series()
    series.eps_by_year = {}
    result = ValuationEngine().run(series, make_quote())

    assert series.eps_by_year == {}
    assert close(result.average_eps, 800.0)
    assert close(result.trailing_per, 12.0)


def test_alternate_quote_drives_price_signal():
    latest = MarketQuote(ticker="TEST", name="Test Corp", price=6_000.0)
    result = ValuationEngine().run(make_series(), make_quote(), PRICE_HISTORY, latest_quote=latest)
    assert result.current_price == 6_000.0
    assert result.price_signal.band == "green"
    # Trailing P/E still uses the primary quote.
    assert close(result.trailing_per, 12.0)


def test_loss_making_company_is_flagged():
    series = make_series()
    series.eps_by_year = {"2024": -200.0, "2023": 800.0, "2022": 600.0}
    result = ValuationEngine().run(series, make_quote())

    assert result.per_status.status == "negative"
    assert close(result.average_eps, 1400.0 / 4.5)
    assert any(o.model_id == "peg" and o.reason == "negative_or_zero" for o in result.outliers)


def test_missing_quote_is_a_precondition_failure():
    with pytest.raises(QuoteNotFoundError):
        ValuationEngine().run(make_series(), None)
    with pytest.raises(QuoteNotFoundError):
        resolve_quote({"TEST": make_quote()}, "OTHER")
    assert resolve_quote({"TEST": make_quote()}, "TEST").ticker == "TEST"


def test_results_are_deterministic_and_serializable():
    first = ValuationEngine().run(make_series(), make_quote(), PRICE_HISTORY)
    second = ValuationEngine().run(make_series(), make_quote(), PRICE_HISTORY)

    assert first.to_dict() == second.to_dict()
    payload = json.loads(json.dumps(first.to_dict()))
    assert payload["price_range"]["mid"] == first.price_range.mid
    assert len(payload["categorized"]["all"]) == 8
    assert payload["has_outliers"] is False
