"""Fair-price model registry.

Each model turns the aggregates in :class:`ModelInputs` into one candidate
price per share. Models never raise: a missing denominator yields ``0.0``,
which the outlier filter later excludes as ``negative_or_zero``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fairprice.domain.models.financials import ModelCategory
from fairprice.domain.services.calculations import safe_div

CORPORATE_TAX_RATE = 0.25
CURRENT_LIABILITY_WEIGHT = 1.2
FIXED_EPS_MULTIPLE = 10.0


@dataclass(frozen=True)
class ModelInputs:
    """Aggregates shared by every model for one valuation request."""

    average_eps: float
    average_per: float
    average_roe: float
    average_operating_income: float
    latest_eps: float
    latest_net_income: float
    peg_per: float
    shares: float
    treasury_shares: float
    target_per: float
    discount_rate: float
    owners_equity: float
    current_assets: float
    current_liabilities: float
    investment_assets: float
    non_current_liabilities: float

    @property
    def required_return(self) -> float:
        return self.discount_rate / 100.0


@dataclass(frozen=True)
class ValuationModel:
    model_id: str
    label: str
    category: ModelCategory
    compute: Callable[[ModelInputs], float]


def eps_times_historical_per(inputs: ModelInputs) -> float:
    return inputs.average_eps * inputs.average_per


def net_income_times_target_per(inputs: ModelInputs) -> float:
    return safe_div(inputs.latest_net_income * inputs.target_per, inputs.shares)


def book_value_per_share(inputs: ModelInputs) -> float:
    return safe_div(inputs.owners_equity, inputs.shares)


def eps_times_ten(inputs: ModelInputs) -> float:
    return inputs.average_eps * FIXED_EPS_MULTIPLE


def roe_times_eps(inputs: ModelInputs) -> float:
    roe_multiple = inputs.average_roe / 100.0 * 100.0
    return roe_multiple * inputs.average_eps


def yamaguchi(inputs: ModelInputs) -> float:
    """Capitalised after-tax operating income plus net non-operating assets."""
    rate = inputs.required_return
    if rate <= 0 or inputs.shares <= 0:
        return 0.0
    operating_value = inputs.average_operating_income * (1.0 - CORPORATE_TAX_RATE) / rate
    non_operating_value = (
        inputs.current_assets
        - inputs.current_liabilities * CURRENT_LIABILITY_WEIGHT
        + inputs.investment_assets
    )
    return (operating_value + non_operating_value - inputs.non_current_liabilities) / inputs.shares


def residual_income(inputs: ModelInputs, roe_factor: float = 1.0) -> float:
    """S-RIM: book equity plus capitalised excess return over ``required_return``."""
    rate = inputs.required_return
    float_shares = inputs.shares - inputs.treasury_shares
    equity = inputs.owners_equity
    if rate <= 0 or float_shares <= 0 or equity == 0:
        return 0.0
    roe = inputs.average_roe / 100.0 * roe_factor
    return (equity + equity * (roe - rate) / rate) / float_shares


def peg_based(inputs: ModelInputs) -> float:
    return inputs.latest_eps * inputs.peg_per


MODEL_REGISTRY: Tuple[ValuationModel, ...] = (
    ValuationModel("eps_per", "EPS x historical average P/E", ModelCategory.EARNINGS, eps_times_historical_per),
    ValuationModel(
        "net_income_per", "Net income x target P/E", ModelCategory.EARNINGS, net_income_times_target_per
    ),
    ValuationModel("bps", "Book value per share (BPS)", ModelCategory.ASSET, book_value_per_share),
    ValuationModel("eps_x10", "EPS x 10", ModelCategory.EARNINGS, eps_times_ten),
    ValuationModel("roe_eps", "ROE x EPS", ModelCategory.MIXED, roe_times_eps),
    ValuationModel("yamaguchi", "Yamaguchi operating value", ModelCategory.MIXED, yamaguchi),
    ValuationModel("srim_base", "S-RIM base scenario", ModelCategory.ASSET, residual_income),
    ValuationModel(
        "srim_decline_10",
        "S-RIM with ROE down 10%",
        ModelCategory.REFERENCE,
        lambda inputs: residual_income(inputs, 0.9),
    ),
    ValuationModel(
        "srim_decline_20",
        "S-RIM with ROE down 20%",
        ModelCategory.REFERENCE,
        lambda inputs: residual_income(inputs, 0.8),
    ),
    ValuationModel("peg", "PEG-based fair price", ModelCategory.EARNINGS, peg_based),
)

BOOK_VALUE_MODEL_ID = "bps"


def run_models(inputs: ModelInputs) -> Dict[str, float]:
    """Evaluate every registered model in registry order."""
    return {model.model_id: float(model.compute(inputs)) for model in MODEL_REGISTRY}


def get_model(model_id: str) -> ValuationModel:
    for model in MODEL_REGISTRY:
        if model.model_id == model_id:
            return model
    raise KeyError(model_id)
