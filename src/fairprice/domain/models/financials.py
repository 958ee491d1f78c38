"""Domain models describing the data exchanged with the valuation engine."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_TREASURY_SHARES = 0.0
DEFAULT_TARGET_PER = 10.0
DEFAULT_DISCOUNT_RATE = 8.0
DEFAULT_PEG_RATIO = 1.0


class QuoteNotFoundError(LookupError):
    """Raised when the market quote required for a valuation is missing."""


@dataclass
class FinancialSeries:
    """Three fiscal years of statement data, newest year first in ``years``.

    Per-year metrics are keyed by the labels in ``years``; a year that is not
    present in a mapping is treated as absent rather than zero. The scalar
    fields are point-in-time values as of ``years[0]``.
    """

    years: List[str] = field(default_factory=list)
    eps_by_year: Dict[str, float] = field(default_factory=dict)
    revenue_by_year: Dict[str, float] = field(default_factory=dict)
    operating_income_by_year: Dict[str, float] = field(default_factory=dict)
    net_income_by_year: Dict[str, float] = field(default_factory=dict)
    equity_by_year: Dict[str, float] = field(default_factory=dict)
    retained_earnings_by_year: Dict[str, float] = field(default_factory=dict)

    revenue: Optional[float] = None
    operating_income: Optional[float] = None
    net_income: Optional[float] = None
    gross_profit: Optional[float] = None
    total_assets: Optional[float] = None
    equity: Optional[float] = None
    equity_attributable_to_owners: Optional[float] = None
    current_assets: Optional[float] = None
    current_liabilities: Optional[float] = None
    non_current_liabilities: Optional[float] = None
    inventories: Optional[float] = None
    cost_of_sales: Optional[float] = None
    trade_receivables: Optional[float] = None
    trade_payables: Optional[float] = None
    interest_expense: Optional[float] = None
    investment_assets: Optional[float] = None
    free_cash_flow: Optional[float] = None

    @property
    def latest_year(self) -> Optional[str]:
        return self.years[0] if self.years else None

    def eps(self, year: str) -> Optional[float]:
        return _present(self.eps_by_year.get(year))

    def latest_net_income(self) -> Optional[float]:
        """Point-in-time net income, falling back to the newest yearly figure."""
        if _present(self.net_income) is not None:
            return self.net_income
        if self.latest_year is None:
            return None
        return _present(self.net_income_by_year.get(self.latest_year))


@dataclass(frozen=True)
class MarketQuote:
    """Quote snapshot for a single listed company."""

    ticker: str
    name: str
    price: float
    shares_outstanding: float = 0.0
    as_of: Optional[str] = None
    historical_prices: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class UserAssumptions:
    """User-tunable inputs; percentages are expressed as plain numbers (8 == 8%)."""

    treasury_shares: float = DEFAULT_TREASURY_SHARES
    target_per: float = DEFAULT_TARGET_PER
    discount_rate: float = DEFAULT_DISCOUNT_RATE
    peg_ratio: float = DEFAULT_PEG_RATIO

    @classmethod
    def from_raw(
        cls,
        raw: Optional[Mapping[str, Any]] = None,
        *,
        defaults: Optional["UserAssumptions"] = None,
    ) -> "UserAssumptions":
        """Build assumptions from loosely typed input such as form fields.

        ``None``, empty strings, non-numeric text and NaN all resolve to the
        default for that field instead of zero.
        """
        base = defaults or cls()
        raw = raw or {}
        return cls(
            treasury_shares=_or_default(raw.get("treasury_shares"), base.treasury_shares),
            target_per=_or_default(raw.get("target_per"), base.target_per),
            discount_rate=_or_default(raw.get("discount_rate"), base.discount_rate),
            peg_ratio=_or_default(raw.get("peg_ratio"), base.peg_ratio),
        )


class ModelCategory(str, Enum):
    ASSET = "asset_based"
    EARNINGS = "earnings_based"
    MIXED = "mixed"
    REFERENCE = "reference_only"


@dataclass
class ModelEstimate:
    """One model's price-per-share output."""

    model_id: str
    label: str
    category: ModelCategory
    value: float
    reason: Optional[str] = None

    @property
    def is_reference(self) -> bool:
        return self.category is ModelCategory.REFERENCE


@dataclass
class CategorizedModels:
    asset_based: List[ModelEstimate] = field(default_factory=list)
    earnings_based: List[ModelEstimate] = field(default_factory=list)
    mixed: List[ModelEstimate] = field(default_factory=list)
    reference_only: List[ModelEstimate] = field(default_factory=list)

    @property
    def all(self) -> List[ModelEstimate]:
        """Models entering the statistics; reference scenarios are excluded."""
        return [*self.asset_based, *self.earnings_based, *self.mixed]


@dataclass
class DataReliability:
    score: int
    message: str


@dataclass
class RiskProfile:
    level: str
    score: float
    message: str


@dataclass
class PriceRange:
    low: float = 0.0
    mid: float = 0.0
    high: float = 0.0


@dataclass
class PriceSignal:
    band: str
    ratio: float
    message: str


@dataclass
class PERStatus:
    status: str
    message: str


@dataclass
class FundamentalsSnapshot:
    """Supporting ratios derived from the same series (percentages as numbers)."""

    growth_rates: Dict[str, float] = field(default_factory=dict)
    average_operating_margin: float = 0.0
    average_roe: float = 0.0
    gross_margin: float = 0.0
    debt_ratio: float = 0.0
    current_ratio: float = 0.0
    interest_coverage: float = 0.0
    cash_conversion_days: float = 0.0
    fcf_ratio: float = 0.0
    pbr: float = 0.0


@dataclass
class ValuationResult:
    """Everything the engine produces for one valuation request."""

    ticker: str
    name: str
    current_price: float
    model_values: Dict[str, float]
    average_eps: float
    average_per: float
    average_roe: float
    average_operating_income: float
    growth_rate: float
    peg_per: float
    trailing_per: float
    reliability: DataReliability
    risk: RiskProfile
    price_range: PriceRange
    price_signal: PriceSignal
    per_status: PERStatus
    categorized: CategorizedModels
    normal_models: List[ModelEstimate]
    outliers: List[ModelEstimate]
    fundamentals: FundamentalsSnapshot
    assumptions: UserAssumptions

    @property
    def has_outliers(self) -> bool:
        return bool(self.outliers)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["categorized"]["all"] = [asdict(m) for m in self.categorized.all]
        payload["has_outliers"] = self.has_outliers
        return payload


def _present(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def _or_default(value: Any, default: float) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(number) else number
