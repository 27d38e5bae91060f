"""Referral review and withdrawal DTOs for data validation."""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from database.models import ReferralStatus, WithdrawalStatus, PayoutMethod


class ReviewReferralDTO(BaseModel):
    """DTO for an administrative referral decision."""

    referral_id: int = Field(..., gt=0, description="Referral ID")
    new_status: ReferralStatus = Field(..., description="Target status")
    notes: Optional[str] = Field(None, max_length=2000, description="Review notes")


class WithdrawalRequestDTO(BaseModel):
    """DTO for a payout request."""

    affiliate_id: int = Field(..., gt=0, description="Affiliate ID")
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Requested amount")
    method: PayoutMethod = Field(..., description="paypal/bank_transfer/crypto")
    payout_destination: str = Field(..., min_length=1, max_length=255, description="Where to send the money")

    @field_validator('payout_destination')
    @classmethod
    def validate_destination(cls, v: str) -> str:
        """Trim and reject blank destinations."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ProcessWithdrawalDTO(BaseModel):
    """DTO for an administrative withdrawal status change."""

    withdrawal_id: int = Field(..., gt=0, description="Withdrawal ID")
    new_status: WithdrawalStatus = Field(..., description="processing/completed/failed")
    transaction_ref: Optional[str] = Field(None, max_length=255, description="Payment provider reference")
    notes: Optional[str] = Field(None, max_length=2000, description="Admin notes")

    @field_validator('transaction_ref')
    @classmethod
    def strip_reference(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None
