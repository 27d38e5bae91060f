"""Database models package."""
from database.models.affiliate import Affiliate, AffiliateStatus, PayoutMethod
from database.models.visit import Visit
from database.models.referral import Referral, ReferralStatus, ConversionType, EARNING_STATUSES
from database.models.withdrawal import Withdrawal, WithdrawalStatus, IN_FLIGHT_STATUSES

__all__ = [
    "Affiliate",
    "AffiliateStatus",
    "PayoutMethod",
    "Visit",
    "Referral",
    "ReferralStatus",
    "ConversionType",
    "EARNING_STATUSES",
    "Withdrawal",
    "WithdrawalStatus",
    "IN_FLIGHT_STATUSES",
]
