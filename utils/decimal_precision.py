#!/usr/bin/env python3
"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all monetary operations
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

from utils.exception_handler import InvalidAmountError

logger = logging.getLogger(__name__)

getcontext().prec = 28


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    CURRENCY_PRECISION = Decimal("0.01")
    MAX_AMOUNT = Decimal("999999999999")

    @classmethod
    def to_decimal(cls, value: Union[str, int, float, Decimal], context: str = "monetary") -> Decimal:
        """Safely convert any numeric value to Decimal, rejecting garbage"""
        if isinstance(value, bool) or value is None:
            raise InvalidAmountError(f"Invalid {context} amount: {value!r}")

        if isinstance(value, Decimal):
            decimal_value = value
        else:
            try:
                # Convert to string first to avoid float precision issues
                decimal_value = Decimal(str(value))
            except (InvalidOperation, ValueError) as e:
                raise InvalidAmountError(f"Invalid {context} amount: {value!r}") from e

        if not decimal_value.is_finite():
            raise InvalidAmountError(f"Invalid {context} amount: {value!r}")
        if abs(decimal_value) > cls.MAX_AMOUNT:
            logger.warning(f"Unusually large monetary value: {decimal_value} in context: {context}")

        return decimal_value

    @classmethod
    def quantize(cls, amount: Union[str, int, float, Decimal]) -> Decimal:
        """Quantize amount to currency precision (2 decimal places)"""
        return cls.to_decimal(amount).quantize(cls.CURRENCY_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def positive(cls, amount: Union[str, int, float, Decimal], context: str = "monetary") -> Decimal:
        """Quantized amount that must be strictly positive"""
        value = cls.to_decimal(amount, context).quantize(cls.CURRENCY_PRECISION, rounding=ROUND_HALF_UP)
        if value <= 0:
            raise InvalidAmountError(f"{context.capitalize()} amount must be greater than zero, got {amount}")
        return value

    @classmethod
    def to_minor_units(cls, amount: Union[str, int, float, Decimal]) -> int:
        """Kobo/cents as expected by the payment provider"""
        return int(cls.quantize(amount) * 100)

    @classmethod
    def from_minor_units(cls, minor: Union[int, str]) -> Decimal:
        return cls.quantize(cls.to_decimal(minor, "minor unit") / Decimal("100"))
