# =============================================================================
# costa_core/pricing.py
# Price and Margin Formulas
# =============================================================================
"""
Retail pricing helpers used by offers and price quoting.

Margins are markup on cost: (price - cost) / cost * 100.
Commercial prices end in .49 or .99.
"""

from __future__ import annotations
import math
from typing import Dict, Optional

import numpy as np
import pandas as pd

# Upper bounds (exclusive) of each margin band, in percent
MARGIN_BANDS = (
    (5.0, "critical"),
    (15.0, "low"),
    (30.0, "good"),
)


def margin_percent(cost: float, price: float) -> float:
    """Markup over cost in percent; 0 when cost is not positive."""
    if cost is None or cost <= 0:
        return 0.0
    return (price - cost) / cost * 100


def price_for_margin(cost: float, margin: float) -> float:
    """Price that yields the given markup percent over cost."""
    return cost * (1 + margin / 100)


def commercial_round(price: float) -> float:
    """
    Round a price up to the next .49 or .99 ending.

    Usage:
        commercial_round(3.20)  # 3.49
        commercial_round(3.50)  # 3.99
    """
    whole = math.floor(price)
    cents = round(price - whole, 2)
    if cents <= 0.49:
        return round(whole + 0.49, 2)
    return round(whole + 0.99, 2)


def suggested_price(cost: float, markup: float = 1.0) -> float:
    """Cost plus a fixed markup, rounded commercially."""
    return commercial_round(cost + markup)


def quote_price(cost: float, price: Optional[float], target_margin: float) -> Dict[str, float]:
    """
    Price quote for one item: its current margin and two candidate prices.

    Usage:
        quote = quote_price(item.unit_cost, item.sale_price, target_margin=30)
        quote["target_price"]  # cost + 30%, rounded commercially
    """
    return {
        "current_margin": margin_percent(cost, price) if price else 0.0,
        "target_price": commercial_round(price_for_margin(cost, target_margin)),
        "suggested_price": suggested_price(cost),
    }


def margin_band(margin: float) -> str:
    """Classify a margin: critical, low, good or excellent."""
    for upper, band in MARGIN_BANDS:
        if margin < upper:
            return band
    return "excellent"


def add_margin_columns(
    df: pd.DataFrame,
    cost_col: str = "preco_custo",
    price_col: str = "preco_venda",
) -> pd.DataFrame:
    """
    Add ``margem`` (percent) and ``faixa_margem`` (band) columns.

    Rows with no positive cost get a margin of 0.
    """
    out = df.copy()
    cost = out[cost_col].astype(float).to_numpy()
    price = out[price_col].astype(float).to_numpy()

    with np.errstate(divide="ignore", invalid="ignore"):
        margin = np.where(cost > 0, (price - cost) / cost * 100, 0.0)

    out["margem"] = np.nan_to_num(margin, nan=0.0)
    out["faixa_margem"] = [margin_band(m) for m in out["margem"]]
    return out
