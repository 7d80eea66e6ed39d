# =============================================================================
# tests/unit/test_pricing.py
# Unit Tests for pricing helpers
# =============================================================================

import numpy as np
import pandas as pd
import pytest

from costa_core.pricing import (
    add_margin_columns,
    commercial_round,
    margin_band,
    margin_percent,
    price_for_margin,
    quote_price,
    suggested_price,
)


class TestMargins:
    """Markup over cost"""

    def test_margin_percent(self):
        assert margin_percent(10.0, 15.0) == pytest.approx(50.0)

    def test_zero_cost(self):
        assert margin_percent(0, 5.0) == 0.0
        assert margin_percent(None, 5.0) == 0.0

    def test_price_for_margin_inverts(self):
        price = price_for_margin(8.0, 25.0)

        assert price == pytest.approx(10.0)
        assert margin_percent(8.0, price) == pytest.approx(25.0)

    @pytest.mark.parametrize("margin,band", [
        (-3, "critical"), (4.9, "critical"), (5, "low"), (14.99, "low"),
        (15, "good"), (29.9, "good"), (30, "excellent"), (120, "excellent"),
    ])
    def test_bands(self, margin, band):
        assert margin_band(margin) == band


class TestCommercialRounding:
    """.49 / .99 endings"""

    @pytest.mark.parametrize("price,expected", [
        (3.20, 3.49), (3.49, 3.49), (3.50, 3.99), (3.0, 3.49), (9.99, 9.99),
    ])
    def test_round(self, price, expected):
        assert commercial_round(price) == expected

    def test_suggested_price(self):
        assert suggested_price(6.5) == 7.99
        assert suggested_price(6.5, markup=2.2) == 8.99

    def test_quote_price(self):
        quote = quote_price(8.0, 10.0, target_margin=25.0)

        assert quote["current_margin"] == pytest.approx(25.0)
        assert quote["target_price"] == 10.49
        assert quote["suggested_price"] == 9.49

    def test_quote_without_sale_price(self):
        assert quote_price(8.0, None, target_margin=25.0)["current_margin"] == 0.0


class TestDataFrame:
    """Vectorized margin columns"""

    def test_add_margin_columns(self):
        df = pd.DataFrame({
            "preco_custo": [10.0, 0.0, 4.0],
            "preco_venda": [12.0, 5.0, np.nan],
        })

        out = add_margin_columns(df)

        assert list(out["margem"].round(2)) == [20.0, 0.0, 0.0]
        assert list(out["faixa_margem"]) == ["good", "critical", "critical"]
        assert "margem" not in df.columns
