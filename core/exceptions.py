"""
Custom application exceptions.

These exceptions represent business outcomes (rejected input, illegal state
changes, insufficient funds) that are reported to the caller, not faults.
"""
from decimal import Decimal
from typing import Optional


class AffiliateLedgerError(Exception):
    """Base exception for all application errors."""

    message: str = "Ledger operation failed"
    status_code: int = 400

    def __init__(self, message: Optional[str] = None, **kwargs):
        self.message = message or self.message
        self.details = kwargs
        super().__init__(self.message)


# ============== Authorization ==============

class PermissionDeniedError(AffiliateLedgerError):
    """Caller doesn't have permission for this action."""
    message = "Permission denied"
    status_code = 403


# ============== Validation ==============

class ValidationError(AffiliateLedgerError):
    """Malformed input."""
    message = "Validation error"
    status_code = 422

    def __init__(self, field: str, error: str):
        self.field = field
        self.error = error
        super().__init__(f"Invalid '{field}': {error}", field=field)


# ============== Lookup ==============

class NotFoundError(AffiliateLedgerError):
    """Base not-found error."""
    message = "Not found"
    status_code = 404


class AffiliateNotFoundError(NotFoundError):
    """Affiliate not found."""
    message = "Affiliate not found"

    def __init__(self, affiliate_id: Optional[int] = None):
        self.affiliate_id = affiliate_id
        super().__init__(f"Affiliate #{affiliate_id} not found" if affiliate_id else self.message)


class UnknownAffiliateError(NotFoundError):
    """Referral code does not resolve to an active affiliate."""
    message = "Unknown affiliate code"

    def __init__(self, code: Optional[str] = None):
        self.code = code
        super().__init__(f"Unknown affiliate code '{code}'" if code else self.message)


class ReferralNotFoundError(NotFoundError):
    """Referral not found."""
    message = "Referral not found"

    def __init__(self, referral_id: Optional[int] = None):
        self.referral_id = referral_id
        super().__init__(f"Referral #{referral_id} not found" if referral_id else self.message)


class WithdrawalNotFoundError(NotFoundError):
    """Withdrawal not found."""
    message = "Withdrawal not found"

    def __init__(self, withdrawal_id: Optional[int] = None):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal #{withdrawal_id} not found" if withdrawal_id else self.message)


# ============== State machines ==============

class AffiliateNotActiveError(AffiliateLedgerError):
    """Affiliate exists but is not active."""
    message = "Affiliate is not active"
    status_code = 409

    def __init__(self, affiliate_id: int, status: str):
        self.affiliate_id = affiliate_id
        self.status = status
        super().__init__(f"Affiliate #{affiliate_id} is {status}")


class InvalidTransitionError(AffiliateLedgerError):
    """Illegal state-machine edge."""
    message = "Invalid status transition"
    status_code = 409

    def __init__(self, entity: str, current_status: str, target_status: str):
        self.entity = entity
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Cannot move {entity} from '{current_status}' to '{target_status}'",
            current_status=current_status,
            target_status=target_status,
        )


# ============== Balance ==============

class InsufficientBalanceError(AffiliateLedgerError):
    """Requested amount exceeds the available balance."""
    message = "Insufficient balance"
    status_code = 409

    def __init__(self, available: Decimal, requested: Decimal):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient balance: available {available}, requested {requested}",
            available=str(available),
            requested=str(requested),
        )


class BelowMinimumWithdrawalError(AffiliateLedgerError):
    """Requested amount is under the configured floor."""
    message = "Amount is below the minimum withdrawal"
    status_code = 422

    def __init__(self, minimum: Decimal, requested: Decimal):
        self.minimum = minimum
        self.requested = requested
        super().__init__(
            f"Minimum withdrawal is {minimum}, requested {requested}",
            minimum=str(minimum),
            requested=str(requested),
        )
