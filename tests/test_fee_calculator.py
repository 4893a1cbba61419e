"""
Fee and amount precision tests
Fee plus payout always equals the held amount
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from config import Config
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import InvalidAmountError
from utils.fee_calculator import FeeCalculator


@pytest.mark.unit
class TestFeeCalculator:
    def test_default_five_percent_split(self):
        breakdown = FeeCalculator.calculate_escrow_breakdown(Decimal("300"))

        assert breakdown == {
            "amount": Decimal("300.00"),
            "platform_fee": Decimal("15.00"),
            "seller_payout": Decimal("285.00"),
        }

    def test_rounding_keeps_sum_exact(self):
        breakdown = FeeCalculator.calculate_escrow_breakdown(Decimal("99.99"), fee_percentage=Decimal("5"))

        assert breakdown["platform_fee"] == Decimal("5.00")
        assert breakdown["platform_fee"] + breakdown["seller_payout"] == breakdown["amount"]

    def test_zero_fee_configuration(self):
        with patch.object(Config, "ESCROW_FEE_PERCENTAGE", Decimal("0")):
            breakdown = FeeCalculator.calculate_escrow_breakdown(Decimal("300"))

        assert breakdown["platform_fee"] == Decimal("0.00")
        assert breakdown["seller_payout"] == Decimal("300.00")

    def test_withdrawal_total_adds_flat_fee(self):
        with patch.object(Config, "WITHDRAWAL_FEE", Decimal("50")):
            totals = FeeCalculator.calculate_withdrawal_total("1000")

        assert totals == {"amount": Decimal("1000.00"), "fee": Decimal("50.00"), "total": Decimal("1050.00")}

    def test_non_positive_escrow_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            FeeCalculator.calculate_escrow_breakdown(Decimal("0"))


@pytest.mark.unit
class TestMonetaryDecimal:
    def test_float_input_goes_through_string(self):
        assert MonetaryDecimal.quantize(0.1 + 0.2) == Decimal("0.30")

    def test_minor_units(self):
        assert MonetaryDecimal.to_minor_units(Decimal("1050.50")) == 105050
        assert MonetaryDecimal.from_minor_units(105050) == Decimal("1050.50")
        with pytest.raises(InvalidAmountError):
            MonetaryDecimal.from_minor_units("abc")

    @pytest.mark.parametrize("value", [None, True, "NaN", "Infinity", "twelve"])
    def test_garbage_rejected(self, value):
        with pytest.raises(InvalidAmountError):
            MonetaryDecimal.to_decimal(value)
