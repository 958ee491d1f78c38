"""Load valuation requests from JSON documents.

The document carries already-extracted statement data; nothing is fetched.
Both snake_case and the camelCase keys used by the statement-extraction
exports are accepted::

    {
      "financials": {"years": ["2024", "2023", "2022"], "epsByYear": {...}, ...},
      "quotes": {"005930": {"name": "...", "price": 71000, "sharesOutstanding": ...}},
      "price_history": {"2023": 78500, "2022": 55300},
      "assumptions": {"targetPER": "12", "expectedReturn": "8"}
    }
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

from fairprice.domain.models.financials import FinancialSeries, MarketQuote, UserAssumptions

SERIES_MAP = {
    "eps_by_year": ["eps_by_year", "epsByYear"],
    "revenue_by_year": ["revenue_by_year", "revenueByYear"],
    "operating_income_by_year": ["operating_income_by_year", "operatingIncomes", "operatingIncomeByYear"],
    "net_income_by_year": ["net_income_by_year", "netIncomeByYear"],
    "equity_by_year": ["equity_by_year", "equityByYear"],
    "retained_earnings_by_year": ["retained_earnings_by_year", "retainedEarningsByYear"],
}

SCALAR_MAP = {
    "revenue": ["revenue"],
    "operating_income": ["operating_income", "operatingIncome"],
    "net_income": ["net_income", "netIncome"],
    "gross_profit": ["gross_profit", "grossProfit"],
    "total_assets": ["total_assets", "assets", "totalAssets"],
    "equity": ["equity"],
    "equity_attributable_to_owners": ["equity_attributable_to_owners", "equityAttributableToOwners"],
    "current_assets": ["current_assets", "currentAssets"],
    "current_liabilities": ["current_liabilities", "currentLiabilities"],
    "non_current_liabilities": ["non_current_liabilities", "nonCurrentLiabilities"],
    "inventories": ["inventories"],
    "cost_of_sales": ["cost_of_sales", "costOfSales"],
    "trade_receivables": ["trade_receivables", "tradeReceivables"],
    "trade_payables": ["trade_payables", "tradePayables"],
    "interest_expense": ["interest_expense", "interestExpense"],
    "investment_assets": ["investment_assets", "investmentAssets"],
    "free_cash_flow": ["free_cash_flow", "freeCashFlow"],
}

ASSUMPTION_MAP = {
    "treasury_shares": ["treasury_shares", "treasuryShares"],
    "target_per": ["target_per", "targetPER"],
    "discount_rate": ["discount_rate", "expectedReturn"],
    "peg_ratio": ["peg_ratio", "pegRatio"],
}


class InputFileError(ValueError):
    """Raised when a request document cannot be read or has the wrong shape."""


@dataclass
class ValuationRequest:
    series: FinancialSeries
    quotes: Dict[str, MarketQuote]
    price_history: Dict[str, float] = field(default_factory=dict)
    raw_assumptions: Dict[str, Any] = field(default_factory=dict)

    def assumptions(self, defaults: Optional[UserAssumptions] = None) -> UserAssumptions:
        return UserAssumptions.from_raw(self.raw_assumptions, defaults=defaults)


def load_request(path: Path) -> ValuationRequest:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InputFileError(f"Cannot read valuation input {path}: {exc}") from exc
    return parse_request(payload)


def parse_request(payload: Mapping[str, Any]) -> ValuationRequest:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("financials"), Mapping):
        raise InputFileError("Valuation input must contain a 'financials' object.")
    quotes_raw = payload.get("quotes") or {}
    if not isinstance(quotes_raw, Mapping):
        raise InputFileError("'quotes' must map tickers to quote objects.")

    return ValuationRequest(
        series=_normalize_series(payload["financials"]),
        quotes={ticker: _normalize_quote(ticker, raw) for ticker, raw in quotes_raw.items()},
        price_history={str(year): price for year, price in (payload.get("price_history") or {}).items()},
        raw_assumptions=_pick_all(payload.get("assumptions") or {}, ASSUMPTION_MAP),
    )


def _normalize_series(raw: Mapping[str, Any]) -> FinancialSeries:
    years = [str(year) for year in raw.get("years") or []]
    per_year = {
        key: {str(year): value for year, value in (_pick(raw, aliases) or {}).items() if value is not None}
        for key, aliases in SERIES_MAP.items()
    }
    return FinancialSeries(years=years, **per_year, **_pick_all(raw, SCALAR_MAP))


def _normalize_quote(ticker: str, raw: Any) -> MarketQuote:
    if not isinstance(raw, Mapping):
        raise InputFileError(f"Quote for {ticker} must be an object.")
    price = _pick(raw, ["price", "current_price", "currentPrice"])
    if price is None:
        raise InputFileError(f"Quote for {ticker} has no price.")
    history = _pick(raw, ["historical_prices", "historicalPrices"]) or {}
    if not isinstance(history, Mapping):
        raise InputFileError(f"Quote for {ticker} has historical prices that are not keyed by year.")
    try:
        price_value = float(price)
        shares = float(_pick(raw, ["shares_outstanding", "sharesOutstanding"]) or 0.0)
        historical_prices = {str(year): float(value) for year, value in history.items()}
    except (TypeError, ValueError) as exc:
        raise InputFileError(f"Quote for {ticker} has non-numeric values: {exc}") from exc
    return MarketQuote(
        ticker=str(_pick(raw, ["code", "ticker"]) or ticker),
        name=str(_pick(raw, ["name", "company_name"]) or ticker),
        price=price_value,
        shares_outstanding=shares,
        as_of=_pick(raw, ["as_of", "formattedDate", "last_updated"]),
        historical_prices=historical_prices,
    )


def _pick(raw: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    for alias in aliases:
        if alias in raw and raw[alias] is not None:
            return raw[alias]
    return None


def _pick_all(raw: Mapping[str, Any], mapping: Mapping[str, Iterable[str]]) -> Dict[str, Any]:
    picked = {key: _pick(raw, aliases) for key, aliases in mapping.items()}
    return {key: value for key, value in picked.items() if value is not None}
