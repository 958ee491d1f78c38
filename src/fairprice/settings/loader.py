"""Settings helpers to centralize configuration access."""
from __future__ import annotations

from dataclasses import replace
from typing import Optional

from fairprice.config import Config


def load_settings(
    debug_override: Optional[bool] = None,
    *,
    target_per: Optional[float] = None,
    discount_rate: Optional[float] = None,
    peg_ratio: Optional[float] = None,
) -> Config:
    """Return a Config from the environment with CLI overrides layered on top."""
    config = Config.from_env()
    overrides = {
        key: value
        for key, value in {
            "debug": debug_override,
            "target_per": target_per,
            "discount_rate": discount_rate,
            "peg_ratio": peg_ratio,
        }.items()
        if value is not None
    }
    return replace(config, **overrides) if overrides else config
