"""Valuation engine reconciling the fair-price models into a price range.

The engine is a pure calculation: it reads an in-memory
:class:`FinancialSeries` and :class:`MarketQuote`, evaluates every model in
:data:`MODEL_REGISTRY`, discards outliers against the cross-model median and
reports nearest-rank quartiles together with reliability, risk, price-signal
and P/E diagnostics. Nothing here performs I/O or keeps state between calls.
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from fairprice.domain.models.financials import (
    DEFAULT_PEG_RATIO,
    CategorizedModels,
    FinancialSeries,
    MarketQuote,
    ModelCategory,
    ModelEstimate,
    PERStatus,
    PriceRange,
    PriceSignal,
    QuoteNotFoundError,
    UserAssumptions,
    ValuationResult,
)
from fairprice.domain.services.calculations import (
    FundamentalsCalculator,
    ReliabilityScorer,
    RiskProfiler,
    derive_eps,
    growth_rate,
    negative_aware_average,
    safe_div,
    to_number,
    yearly_roe,
)
from fairprice.domain.services.valuators import (
    BOOK_VALUE_MODEL_ID,
    MODEL_REGISTRY,
    ModelInputs,
    run_models,
)

logger = logging.getLogger(__name__)

PriceLookup = Mapping[str, Union[float, MarketQuote]]

DEFAULT_HISTORICAL_PER = 10.0
DEFAULT_GROWTH_PERCENT = 5.0
PEG_PER_BOUNDS = (5.0, 50.0)
OUTLIER_FACTOR = 3.0
MIN_NORMAL_MODELS = 3

REASON_NEGATIVE = "negative_or_zero"
REASON_RANGE = "value_range"

# (exclusive upper ratio, band, message); ratios at or above the last bound are red.
SIGNAL_BANDS: Tuple[Tuple[float, str, str], ...] = (
    (0.7, "green", "Materially undervalued (30% or more below fair value)"),
    (0.9, "lightgreen", "Undervalued (10-30% below fair value)"),
    (1.1, "yellow", "Near fair value (within 10%)"),
    (1.3, "orange", "Overvalued (10-30% above fair value)"),
)
SIGNAL_ABOVE = ("red", "Materially overvalued (30% or more above fair value)")
SIGNAL_UNDEFINED = ("undefined", "Fair value is not positive; no price signal available")

PER_MESSAGES = {
    "negative": "The company is loss-making, so P/E is undefined.",
    "extreme_high": "P/E above 200 is abnormally high; earnings may be tiny or temporarily depressed.",
    "very_high": "P/E is very high; high growth is priced in or earnings dipped temporarily.",
    "very_low": "P/E is very low; the stock may be undervalued or face structural problems.",
    "normal": "P/E is within a normal range.",
}


class ValuationEngine:
    """Run every fair-price model and reconcile the outputs."""

    def __init__(self) -> None:
        self._reliability = ReliabilityScorer()
        self._risk = RiskProfiler()
        self._fundamentals = FundamentalsCalculator()

    def run(
        self,
        series: FinancialSeries,
        quote: Optional[MarketQuote],
        price_history: Optional[PriceLookup] = None,
        assumptions: Optional[UserAssumptions] = None,
        latest_quote: Optional[MarketQuote] = None,
    ) -> ValuationResult:
        if quote is None:
            raise QuoteNotFoundError("Required market quote record not found.")
        assumptions = assumptions or UserAssumptions()
        prices = price_history if price_history is not None else quote.historical_prices
        shares = to_number(quote.shares_outstanding)

        series = derive_eps(series, shares)
        years = series.years

        average_eps = negative_aware_average(series.eps(year) for year in years)
        latest_eps = (series.eps(years[0]) if years else None) or 0.0
        average_roe = self._average_roe(series)
        average_per = self._average_historical_per(series, prices)
        average_operating_income = negative_aware_average(
            series.operating_income_by_year.get(year) for year in years
        )
        growth = self._implied_growth_percent(series)
        peg_ratio = assumptions.peg_ratio or DEFAULT_PEG_RATIO
        low, high = PEG_PER_BOUNDS
        peg_per = max(low, min(high, growth * peg_ratio))
        logger.debug(
            "%s aggregates: avg EPS %.2f, avg P/E %.2f, avg ROE %.2f%%, growth %.2f%%, PEG P/E %.2f",
            quote.ticker,
            average_eps,
            average_per,
            average_roe,
            growth,
            peg_per,
        )

        inputs = ModelInputs(
            average_eps=average_eps,
            average_per=average_per,
            average_roe=average_roe,
            average_operating_income=average_operating_income,
            latest_eps=latest_eps,
            latest_net_income=to_number(series.latest_net_income()),
            peg_per=peg_per,
            shares=shares,
            treasury_shares=to_number(assumptions.treasury_shares),
            target_per=to_number(assumptions.target_per),
            discount_rate=to_number(assumptions.discount_rate),
            owners_equity=to_number(series.equity_attributable_to_owners),
            current_assets=to_number(series.current_assets),
            current_liabilities=to_number(series.current_liabilities),
            investment_assets=to_number(series.investment_assets),
            non_current_liabilities=to_number(series.non_current_liabilities),
        )
        model_values = run_models(inputs)

        categorized = categorize_models(model_values)
        normal_models, outliers = detect_outliers(categorized)
        price_range = calculate_price_range(normal_models, categorized.all)
        if outliers:
            logger.debug("Excluded outliers: %s", ", ".join(f"{m.model_id}({m.reason})" for m in outliers))

        current_price = to_number((latest_quote or quote).price)
        trailing_per = safe_div(quote.price, latest_eps or 1.0)

        result = ValuationResult(
            ticker=quote.ticker,
            name=quote.name,
            current_price=current_price,
            model_values=model_values,
            average_eps=average_eps,
            average_per=average_per,
            average_roe=average_roe,
            average_operating_income=average_operating_income,
            growth_rate=growth,
            peg_per=peg_per,
            trailing_per=trailing_per,
            reliability=self._reliability.score(series),
            risk=self._risk.profile(series),
            price_range=price_range,
            price_signal=classify_price_signal(current_price, price_range.mid),
            per_status=analyze_per(trailing_per, latest_eps),
            categorized=categorized,
            normal_models=normal_models,
            outliers=outliers,
            fundamentals=self._fundamentals.calculate(series, to_number(quote.price), shares),
            assumptions=assumptions,
        )
        logger.info(
            "Valued %s: range %.2f / %.2f / %.2f, signal %s",
            quote.ticker,
            price_range.low,
            price_range.mid,
            price_range.high,
            result.price_signal.band,
        )
        return result

    @staticmethod
    def _average_roe(series: FinancialSeries) -> float:
        roes = yearly_roe(series)
        if roes:
            return negative_aware_average(roes)
        return safe_div(series.latest_net_income(), series.equity_attributable_to_owners) * 100.0

    @staticmethod
    def _average_historical_per(series: FinancialSeries, prices: PriceLookup) -> float:
        ratios: List[float] = []
        for year in series.years:
            eps = series.eps(year)
            price = _lookup_price(prices, year)
            if eps is None or eps == 0.0 or not price:
                continue
            ratios.append(price / eps)
        return sum(ratios) / len(ratios) if ratios else DEFAULT_HISTORICAL_PER

    @staticmethod
    def _implied_growth_percent(series: FinancialSeries) -> float:
        """EPS growth in percent, falling back to net income growth then 5%."""
        years = series.years
        eps = [series.eps(year) for year in years[:3]]
        growth = 0.0
        if len(eps) >= 2 and eps[0] and eps[1]:
            growth = (eps[0] / eps[1] - 1.0) * 100.0
        elif len(eps) >= 3 and eps[0] and eps[0] > 0 and eps[2] and eps[2] > 0:
            # Both endpoints positive, so this is always the compound rate.
            growth = growth_rate([eps[0], eps[1] or 0.0, eps[2]]) * 100.0

        if growth <= 0 and len(years) >= 2:
            latest = to_number(series.net_income_by_year.get(years[0]))
            previous = to_number(series.net_income_by_year.get(years[1]))
            if latest and previous > 0:
                growth = (latest / previous - 1.0) * 100.0

        if growth <= 0:
            growth = DEFAULT_GROWTH_PERCENT
        return growth


def calculate_all_prices(
    series: FinancialSeries,
    quote: Optional[MarketQuote],
    price_history: Optional[PriceLookup] = None,
    assumptions: Optional[UserAssumptions] = None,
    latest_quote: Optional[MarketQuote] = None,
) -> ValuationResult:
    """Functional entry point around :meth:`ValuationEngine.run`."""
    return ValuationEngine().run(series, quote, price_history, assumptions, latest_quote)


def resolve_quote(quotes: Mapping[str, MarketQuote], ticker: str) -> MarketQuote:
    quote = quotes.get(ticker)
    if quote is None:
        raise QuoteNotFoundError(f"Required market quote record not found for {ticker}.")
    return quote


def categorize_models(model_values: Mapping[str, float]) -> CategorizedModels:
    """Group model outputs by the fixed category of each registered model."""
    categorized = CategorizedModels()
    buckets: Dict[ModelCategory, List[ModelEstimate]] = {
        ModelCategory.ASSET: categorized.asset_based,
        ModelCategory.EARNINGS: categorized.earnings_based,
        ModelCategory.MIXED: categorized.mixed,
        ModelCategory.REFERENCE: categorized.reference_only,
    }
    for model in MODEL_REGISTRY:
        if model.model_id not in model_values:
            continue
        buckets[model.category].append(
            ModelEstimate(
                model_id=model.model_id,
                label=model.label,
                category=model.category,
                value=model_values[model.model_id],
            )
        )
    return categorized


def detect_outliers(categorized: CategorizedModels) -> Tuple[List[ModelEstimate], List[ModelEstimate]]:
    """Split the calculation set into ``(normal, outliers)``.

    Reference-only scenarios never take part. The book-value model stays
    normal whenever it is positive.
    """
    models = categorized.all
    positive = sorted(m.value for m in models if _is_positive(m.value))
    median = positive[len(positive) // 2] if positive else 0.0

    normal: List[ModelEstimate] = []
    outliers: List[ModelEstimate] = []
    for model in models:
        if model.model_id == BOOK_VALUE_MODEL_ID and _is_positive(model.value):
            normal.append(model)
        elif not _is_positive(model.value):
            outliers.append(replace(model, reason=REASON_NEGATIVE))
        elif model.value > median * OUTLIER_FACTOR or model.value < median / OUTLIER_FACTOR:
            outliers.append(replace(model, reason=REASON_RANGE))
        else:
            normal.append(model)
    return normal, outliers


def calculate_price_range(
    normal_models: Sequence[ModelEstimate], all_models: Sequence[ModelEstimate]
) -> PriceRange:
    """Nearest-rank quartiles of the normal models, or of all models if too few survive."""
    values = [m.value for m in normal_models if _is_positive(m.value)]
    if len(values) < MIN_NORMAL_MODELS:
        values = [m.value for m in all_models if _is_positive(m.value)]
    if not values:
        return PriceRange()
    values.sort()
    count = len(values)
    return PriceRange(
        low=values[int(count * 0.25)],
        mid=values[int(count * 0.5)],
        high=values[int(count * 0.75)],
    )


def classify_price_signal(current_price: float, fair_value_mid: float) -> PriceSignal:
    if not (_is_positive(fair_value_mid) and _is_positive(current_price)) or math.isinf(fair_value_mid):
        band, message = SIGNAL_UNDEFINED
        return PriceSignal(band=band, ratio=float("nan"), message=message)
    ratio = current_price / fair_value_mid
    for ceiling, band, message in SIGNAL_BANDS:
        if ratio < ceiling:
            return PriceSignal(band=band, ratio=ratio, message=message)
    band, message = SIGNAL_ABOVE
    return PriceSignal(band=band, ratio=ratio, message=message)


def analyze_per(per: float, eps: Optional[float]) -> PERStatus:
    if eps is None or eps <= 0:
        status = "negative"
    elif per > 200:
        status = "extreme_high"
    elif per > 80:
        status = "very_high"
    elif per < 5:
        status = "very_low"
    else:
        status = "normal"
    return PERStatus(status=status, message=PER_MESSAGES[status])


def _is_positive(value: float) -> bool:
    # NaN compares False, so it is never positive.
    return value is not None and value > 0


def _lookup_price(prices: PriceLookup, year: str) -> float:
    entry = prices.get(year) if prices else None
    if isinstance(entry, MarketQuote):
        return to_number(entry.price)
    return to_number(entry)
