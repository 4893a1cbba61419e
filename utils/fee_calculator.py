"""Platform fee calculations for escrow transactions"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from config import Config
from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)


class FeeCalculator:
    """Computes the fee snapshot taken when an escrow transaction is created"""

    @classmethod
    def get_platform_fee_percentage(cls) -> Decimal:
        """Get platform fee percentage from config"""
        return Decimal(str(Config.ESCROW_FEE_PERCENTAGE))

    @classmethod
    def calculate_platform_fee(cls, amount: Decimal, fee_percentage: Optional[Decimal] = None) -> Decimal:
        percentage = cls.get_platform_fee_percentage() if fee_percentage is None else Decimal(str(fee_percentage))
        fee = (MonetaryDecimal.to_decimal(amount) * percentage / Decimal("100")).quantize(
            MonetaryDecimal.CURRENCY_PRECISION, rounding=ROUND_HALF_UP
        )
        return fee

    @classmethod
    def calculate_escrow_breakdown(cls, amount: Decimal, fee_percentage: Optional[Decimal] = None) -> Dict[str, Decimal]:
        """
        Split an escrow amount into platform fee and seller payout.

        The payout is derived by subtraction so that fee + payout always equals
        the held amount exactly.
        """
        escrow_amount = MonetaryDecimal.positive(amount, "escrow")
        platform_fee = cls.calculate_platform_fee(escrow_amount, fee_percentage)
        seller_payout = escrow_amount - platform_fee

        logger.debug(f"Escrow breakdown: amount={escrow_amount} fee={platform_fee} payout={seller_payout}")
        return {
            "amount": escrow_amount,
            "platform_fee": platform_fee,
            "seller_payout": seller_payout,
        }

    @classmethod
    def calculate_withdrawal_total(cls, amount: Decimal) -> Dict[str, Decimal]:
        withdrawal_amount = MonetaryDecimal.positive(amount, "withdrawal")
        fee = MonetaryDecimal.quantize(Config.WITHDRAWAL_FEE)
        return {"amount": withdrawal_amount, "fee": fee, "total": withdrawal_amount + fee}
