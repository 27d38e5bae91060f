"""Affiliate registry DTOs for data validation."""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from database.models import PayoutMethod


def _check_email(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip().lower()
    local, _, domain = v.partition("@")
    if not local or "." not in domain:
        raise ValueError("not a valid email address")
    return v


class RegisterAffiliateDTO(BaseModel):
    """DTO for registering a new affiliate."""

    owner_account_id: int = Field(..., gt=0, description="Identity store account ID")
    email: str = Field(..., max_length=255, description="Contact email")
    payout_method: PayoutMethod = Field(PayoutMethod.PAYPAL, description="paypal/bank_transfer/crypto")
    payout_email: Optional[str] = Field(None, max_length=255, description="PayPal email")
    commission_rate: Optional[Decimal] = Field(
        None, ge=0, le=100, max_digits=5, decimal_places=2, description="Commission percentage"
    )

    @field_validator('email', 'payout_email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


class CommissionRateDTO(BaseModel):
    """DTO for changing an affiliate's commission rate."""

    commission_rate: Decimal = Field(..., ge=0, le=100, max_digits=5, decimal_places=2)


class PayoutDetailsDTO(BaseModel):
    """DTO for updating where an affiliate gets paid."""

    payout_method: PayoutMethod = Field(..., description="paypal/bank_transfer/crypto")
    payout_email: Optional[str] = Field(None, max_length=255)

    @field_validator('payout_email')
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)
