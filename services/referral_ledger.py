"""Referral ledger: the referral review state machine."""
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.dto import validate_dto, ReviewReferralDTO
from core.exceptions import (
    AffiliateNotFoundError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ReferralNotFoundError,
    ValidationError,
)
from database.base import utcnow
from database.models import Referral, ReferralStatus
from database.repositories import AffiliateRepository, ReferralRepository
from services.authorization import Actor, Authorizer
from services.notifications import AffiliateNotifier
from services.stats import StatsAggregator

logger = logging.getLogger(__name__)


# Legal edges; rejected and paid are terminal
TRANSITIONS = {
    ReferralStatus.PENDING.value: {ReferralStatus.APPROVED.value, ReferralStatus.REJECTED.value},
    ReferralStatus.APPROVED.value: {ReferralStatus.PAID.value, ReferralStatus.REJECTED.value},
}


class ReferralLedger:
    """
    Sole writer of referral status.

    Each transition locks the affiliate row, then the referral row, writes
    the new status and recomputes the affiliate totals in one transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        authorizer: Authorizer,
        notifier: Optional[AffiliateNotifier] = None,
    ):
        self.session = session
        self.authorizer = authorizer
        self.notifier = notifier
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.stats = StatsAggregator(session)

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        return new_status in TRANSITIONS.get(current_status, ())

    async def transition(
        self,
        referral_id: int,
        new_status: ReferralStatus,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> Referral:
        """
        Move a referral to a new status (admin only).

        Args:
            referral_id: Referral ID
            new_status: approved/rejected/paid
            actor: Reviewing admin
            notes: Review notes; kept as-is when omitted

        Returns:
            Updated referral

        Raises:
            PermissionDeniedError: Caller is not an admin
            ReferralNotFoundError: No such referral
            InvalidTransitionError: Illegal edge
            InsufficientBalanceError: Reversal of a commission that was already withdrawn
        """
        self.authorizer.require(self.authorizer.can_review_referral(actor), "review referrals")
        dto = validate_dto(ReviewReferralDTO, referral_id=referral_id, new_status=new_status, notes=notes)
        target = dto.new_status.value

        try:
            referral = await self.referral_repo.get_by_id(dto.referral_id)
            if not referral:
                raise ReferralNotFoundError(dto.referral_id)

            affiliate = await self.affiliate_repo.get_for_update(referral.affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(referral.affiliate_id)
            referral = await self.referral_repo.get_for_update(dto.referral_id)
            if not referral:
                raise ReferralNotFoundError(dto.referral_id)

            current = referral.status
            if not self.can_transition(current, target):
                raise InvalidTransitionError("referral", current, target)

            if current == ReferralStatus.APPROVED.value and target == ReferralStatus.REJECTED.value:
                if affiliate.total_earnings < referral.commission_amount:
                    raise InsufficientBalanceError(
                        available=affiliate.total_earnings,
                        requested=referral.commission_amount,
                    )

            referral.status = target
            if dto.notes is not None:
                referral.notes = dto.notes
            referral.reviewed_by = actor.account_id
            referral.reviewed_at = utcnow()

            affiliate = await self.stats.recompute(affiliate.id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Referral {referral.id} {current} → {target} by {actor.account_id}; "
            f"affiliate {affiliate.id} earnings now {affiliate.total_earnings}",
            extra={
                "referral_id": referral.id,
                "affiliate_id": affiliate.id,
                "status": target,
                "amount": str(referral.commission_amount),
            }
        )

        if target == ReferralStatus.APPROVED.value and self.notifier:
            await self.notifier.commission_approved(affiliate, referral)

        return referral

    async def get_referral(self, referral_id: int, actor: Actor) -> Referral:
        """Get a referral visible to the caller (admin or owning affiliate)."""
        referral = await self.referral_repo.get_by_id(referral_id)
        if not referral:
            raise ReferralNotFoundError(referral_id)
        affiliate = await self.affiliate_repo.get_by_id(referral.affiliate_id)
        self.authorizer.require(
            affiliate is not None and self.authorizer.can_view_affiliate(actor, affiliate),
            "view referral"
        )
        return referral

    async def list_referrals(
        self,
        affiliate_id: int,
        actor: Actor,
        status: Optional[ReferralStatus] = None,
    ) -> List[Referral]:
        """Referrals of an affiliate, newest first."""
        affiliate = await self.affiliate_repo.get_by_id(affiliate_id)
        if not affiliate:
            raise AffiliateNotFoundError(affiliate_id)
        self.authorizer.require(self.authorizer.can_view_affiliate(actor, affiliate), "view referrals")
        if status is not None:
            try:
                status = ReferralStatus(status)
            except ValueError as e:
                raise ValidationError("status", f"unknown referral status '{status}'") from e
        return await self.referral_repo.get_all_by_affiliate(affiliate_id, status)
