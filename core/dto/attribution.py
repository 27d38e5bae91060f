"""Attribution DTOs for data validation."""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from database.models import ConversionType


class VisitContextDTO(BaseModel):
    """Context captured with a referral-link hit."""

    page_url: Optional[str] = Field(None, max_length=2048, description="Landing page")
    referrer: Optional[str] = Field(None, max_length=2048, description="Referring site")
    user_agent: Optional[str] = Field(None, max_length=1024, description="Raw User-Agent")
    ip_address: Optional[str] = Field(None, max_length=45, description="Client IP")
    country: Optional[str] = Field(None, max_length=64, description="Coarse country")
    device_type: Optional[str] = Field(None, max_length=20, description="mobile/desktop")
    browser: Optional[str] = Field(None, max_length=50, description="Browser family")


class AttributeReferralDTO(BaseModel):
    """DTO for attributing a completed order to an affiliate."""

    code: str = Field(..., min_length=1, max_length=32, description="Referral code")
    order_id: str = Field(..., min_length=1, max_length=255, description="External order ID")
    order_amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2, description="Order total")
    conversion_type: ConversionType = Field(ConversionType.PURCHASE, description="signup/purchase/subscription")
    referred_account_id: Optional[int] = Field(None, description="Referred customer account")

    @field_validator('code', 'order_id')
    @classmethod
    def strip_value(cls, v: str) -> str:
        """Trim whitespace and reject blanks."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v
