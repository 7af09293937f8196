"""Unit tests for listing price and internal cost calculation."""
import pytest
from decimal import Decimal

from catalog_sync.errors import InvalidInput
from catalog_sync.services.pricing import internal_total_cost, to_destination_price


class TestToDestinationPrice:
    """Tests for to_destination_price."""

    def test_reference_scenario(self):
        """10000 * 0.00075 = 7.5; * 1.2 = 9.0; + 2 = 11.00."""
        assert to_destination_price(10000, "0.00075", 20, 2) == "11.00"

    def test_always_two_decimal_places(self):
        assert to_destination_price(0, 1, 0, 0) == "0.00"
        assert to_destination_price(100, "0.01", 0, 0) == "1.00"

    def test_rounds_half_up(self):
        # 1 * 0.005 = 0.005 -> 0.01
        assert to_destination_price(1, "0.005", 0, 0) == "0.01"
        # 1 * 0.0049 = 0.0049 -> 0.00
        assert to_destination_price(1, "0.0049", 0, 0) == "0.00"

    def test_accepts_decimal_and_string_inputs(self):
        assert to_destination_price(Decimal("10000"), Decimal("0.00075"), "20", "2") == "11.00"

    def test_monotonic_in_source_amount(self):
        prices = [
            Decimal(to_destination_price(amount, "0.00075", 20, 2))
            for amount in range(0, 200000, 7919)
        ]
        assert prices == sorted(prices)

    @pytest.mark.parametrize("amount,rate", [(0, "0.00075"), (10000, "0.00075"), (999, "0.0123")])
    def test_non_decreasing_in_markup(self, amount, rate):
        prices = [
            Decimal(to_destination_price(amount, rate, markup, 2))
            for markup in ("0", "0.5", "1", "12.5", "20", "100", "250")
        ]
        assert prices == sorted(prices)

    @pytest.mark.parametrize("amount,rate", [(0, "0.00075"), (10000, "0.00075"), (999, "0.0123")])
    def test_non_decreasing_in_fee(self, amount, rate):
        prices = [
            Decimal(to_destination_price(amount, rate, 20, fee))
            for fee in ("0", "0.001", "0.5", "2", "2.005", "10", "99.99")
        ]
        assert prices == sorted(prices)

    @pytest.mark.parametrize("amount,markup,fee", [(1, 0, 0), (10000, 20, 2), (250000, "7.5", "0.99")])
    def test_strictly_increasing_in_rate(self, amount, markup, fee):
        # Each step moves the unrounded price by at least one cent
        rates = ("0.01", "0.03", "0.05", "0.1", "0.5", "1", "2.5")
        prices = [Decimal(to_destination_price(amount, rate, markup, fee)) for rate in rates]
        assert all(a < b for a, b in zip(prices, prices[1:]))

    def test_zero_amount_yields_handling_fee(self):
        assert to_destination_price(0, "0.00075", 20, "2.5") == "2.50"

    @pytest.mark.parametrize(
        "amount,rate,markup,fee",
        [
            (-1, "0.00075", 20, 2),
            (100, 0, 20, 2),
            (100, "-0.1", 20, 2),
            (100, "0.00075", -5, 2),
            (100, "0.00075", 20, -1),
        ],
    )
    def test_out_of_bounds_inputs_rejected(self, amount, rate, markup, fee):
        with pytest.raises(InvalidInput):
            to_destination_price(amount, rate, markup, fee)

    @pytest.mark.parametrize("bad", ["abc", "", None, float("nan"), "Infinity", True])
    def test_non_numeric_amount_rejected(self, bad):
        with pytest.raises(InvalidInput):
            to_destination_price(bad, "0.00075", 20, 2)


class TestInternalTotalCost:
    """Tests for internal_total_cost."""

    def test_breakdown(self):
        cost = internal_total_cost(10000, 3000, "0.00075", 2)
        assert cost is not None
        assert cost.item_price_destination == Decimal("7.50")
        assert cost.shipping_fee_destination == Decimal("2.25")
        assert cost.handling_fee_destination == Decimal("2.00")
        # 2 / 0.00075 = 2666.67 -> 2667
        assert cost.handling_fee_source == Decimal("2667")
        assert cost.total_source == Decimal("15667")
        assert cost.total_destination == Decimal("11.75")

    def test_missing_rate_returns_none(self):
        assert internal_total_cost(10000, 3000, None, 2) is None

    def test_invalid_inputs_return_none(self):
        assert internal_total_cost("abc", 3000, "0.00075", 2) is None
        assert internal_total_cost(10000, -1, "0.00075", 2) is None
        assert internal_total_cost(10000, 3000, 0, 2) is None
