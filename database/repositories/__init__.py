"""Database repositories package."""
from database.repositories.affiliate import AffiliateRepository
from database.repositories.visit import VisitRepository
from database.repositories.referral import ReferralRepository, ReferralTotals
from database.repositories.withdrawal import WithdrawalRepository

__all__ = [
    "AffiliateRepository",
    "VisitRepository",
    "ReferralRepository",
    "ReferralTotals",
    "WithdrawalRepository",
]
