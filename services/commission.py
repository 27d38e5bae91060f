"""Commission calculation with currency rounding."""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize to currency precision (2 dp, half-up)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CommissionQuote:
    """Rate and amount frozen onto a referral at attribution time."""
    rate: Decimal
    amount: Decimal


def calculate_commission(order_amount: Decimal, commission_rate: Decimal) -> CommissionQuote:
    """
    Calculate commission for an order.

    Args:
        order_amount: Order total
        commission_rate: Affiliate rate in percent, read at attribution time

    Returns:
        CommissionQuote with the snapshotted rate and the rounded amount

    Example:
        1000.00 × 15% = 150.00
    """
    rate = Decimal(str(commission_rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    amount = to_money(Decimal(str(order_amount)) * rate / Decimal(100))
    return CommissionQuote(rate=rate, amount=amount)
