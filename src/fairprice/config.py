"""Application-wide configuration defaults and helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fairprice.domain.models.financials import (
    DEFAULT_DISCOUNT_RATE,
    DEFAULT_PEG_RATIO,
    DEFAULT_TARGET_PER,
    UserAssumptions,
)

# Base directory for resolving relative paths.
BASE_DIR = Path.cwd()


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse truthy environment values like '1' or 'true'."""
    if value is None:
        return default
    if not isinstance(value, str):
        value = str(value)
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_float(value: Optional[str], default: float) -> float:
    """Safely parse a float env var, returning ``default`` on failure."""
    if value is None or not str(value).strip():
        return default
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass
class Config:
    """Runtime configuration loaded from environment variables."""

    debug: bool = False
    target_per: float = DEFAULT_TARGET_PER
    discount_rate: float = DEFAULT_DISCOUNT_RATE
    peg_ratio: float = DEFAULT_PEG_RATIO
    output_dir: Path = BASE_DIR / "valuations"

    @classmethod
    def from_env(cls) -> "Config":
        """Build a configuration instance using environment overrides."""
        return cls(
            debug=_to_bool(os.getenv("FAIRPRICE_DEBUG")),
            target_per=_to_float(os.getenv("FAIRPRICE_TARGET_PER"), DEFAULT_TARGET_PER),
            discount_rate=_to_float(os.getenv("FAIRPRICE_DISCOUNT_RATE"), DEFAULT_DISCOUNT_RATE),
            peg_ratio=_to_float(os.getenv("FAIRPRICE_PEG_RATIO"), DEFAULT_PEG_RATIO),
            output_dir=Path(os.getenv("FAIRPRICE_OUTPUT_DIR", BASE_DIR / "valuations")),
        )

    def default_assumptions(self) -> UserAssumptions:
        """Assumptions a request starts from before user overrides are applied."""
        return UserAssumptions(
            target_per=self.target_per,
            discount_rate=self.discount_rate,
            peg_ratio=self.peg_ratio,
        )

    def ensure_directories(self) -> None:
        """Create directories needed for runtime artifacts."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
