"""Affiliate registry: onboarding, status and rate management."""
import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from core.dto import validate_dto, RegisterAffiliateDTO, CommissionRateDTO, PayoutDetailsDTO
from core.exceptions import AffiliateNotFoundError, ValidationError
from database.models import Affiliate, AffiliateStatus, PayoutMethod
from database.repositories import AffiliateRepository
from server.config import settings
from services.authorization import Actor, Authorizer

logger = logging.getLogger(__name__)


class AffiliateRegistry:
    """Service for affiliate profile operations."""

    REFERRAL_PARAM = "ref"

    def __init__(self, session: AsyncSession, authorizer: Authorizer):
        self.session = session
        self.authorizer = authorizer
        self.affiliate_repo = AffiliateRepository(session)

    @classmethod
    def build_referral_link(cls, code: str, base_url: Optional[str] = None) -> str:
        """Referral link for a code: `<base_url>?ref=<CODE>`."""
        base = (base_url or settings.referral_base_url).rstrip("/")
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode({cls.REFERRAL_PARAM: code})}"

    async def get_by_code(self, code: str) -> Optional[Affiliate]:
        return await self.affiliate_repo.get_by_code(code)

    async def get_by_owner(self, owner_account_id: int) -> Optional[Affiliate]:
        return await self.affiliate_repo.get_by_owner(owner_account_id)

    async def register(
        self,
        owner_account_id: int,
        email: str,
        payout_email: Optional[str] = None,
        payout_method: PayoutMethod = PayoutMethod.PAYPAL,
        commission_rate: Optional[Decimal] = None,
    ) -> Affiliate:
        """
        Register a new affiliate with a freshly generated code.

        The affiliate starts `pending` and earns nothing until an admin
        activates it.

        Raises:
            ValidationError: Bad input or the account already has an affiliate profile
        """
        dto = validate_dto(
            RegisterAffiliateDTO,
            owner_account_id=owner_account_id,
            email=email,
            payout_email=payout_email,
            payout_method=payout_method,
            commission_rate=commission_rate,
        )

        if await self.affiliate_repo.get_by_owner(dto.owner_account_id):
            raise ValidationError("owner_account_id", "account already has an affiliate profile")

        try:
            affiliate = await self.affiliate_repo.create(
                owner_account_id=dto.owner_account_id,
                email=dto.email,
                commission_rate=(
                    dto.commission_rate
                    if dto.commission_rate is not None
                    else settings.default_commission_rate
                ),
                payout_method=dto.payout_method,
                payout_email=dto.payout_email or (
                    dto.email if dto.payout_method == PayoutMethod.PAYPAL else None
                ),
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Registered affiliate {affiliate.id} ({affiliate.affiliate_code}) "
            f"for account {owner_account_id}",
            extra={"affiliate_id": affiliate.id, "account_id": owner_account_id}
        )
        return affiliate

    async def set_status(self, affiliate_id: int, status: AffiliateStatus, actor: Actor) -> Affiliate:
        """Approve, suspend or reject an affiliate (admin only)."""
        self.authorizer.require(self.authorizer.can_manage_affiliates(actor), "manage affiliates")
        try:
            status = AffiliateStatus(status)
        except ValueError as e:
            raise ValidationError("status", f"unknown affiliate status '{status}'") from e

        try:
            affiliate = await self.affiliate_repo.get_for_update(affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(affiliate_id)

            previous = affiliate.status
            affiliate.status = status.value
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Affiliate {affiliate_id} status {previous} → {status.value} by {actor.account_id}",
            extra={"affiliate_id": affiliate_id, "status": status.value}
        )
        return affiliate

    async def update_commission_rate(self, affiliate_id: int, commission_rate: Decimal, actor: Actor) -> Affiliate:
        """
        Change an affiliate's rate (admin only).

        Only referrals attributed after the change use the new rate.
        """
        self.authorizer.require(self.authorizer.can_manage_affiliates(actor), "change commission rate")
        dto = validate_dto(CommissionRateDTO, commission_rate=commission_rate)

        try:
            affiliate = await self.affiliate_repo.get_for_update(affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(affiliate_id)

            previous = affiliate.commission_rate
            affiliate.commission_rate = dto.commission_rate
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Affiliate {affiliate_id} commission rate {previous}% → {dto.commission_rate}%",
            extra={"affiliate_id": affiliate_id}
        )
        return affiliate

    async def update_payout_details(
        self,
        affiliate_id: int,
        payout_method: PayoutMethod,
        payout_email: Optional[str],
        actor: Actor,
    ) -> Affiliate:
        """Change where the affiliate gets paid (owner or admin)."""
        dto = validate_dto(PayoutDetailsDTO, payout_method=payout_method, payout_email=payout_email)
        if dto.payout_method == PayoutMethod.PAYPAL and not dto.payout_email:
            raise ValidationError("payout_email", "required for PayPal payouts")

        try:
            affiliate = await self.affiliate_repo.get_for_update(affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(affiliate_id)
            self.authorizer.require(
                self.authorizer.can_view_affiliate(actor, affiliate),
                "update payout details"
            )

            affiliate.payout_method = dto.payout_method.value
            affiliate.payout_email = dto.payout_email
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Affiliate {affiliate_id} payout details updated", extra={"affiliate_id": affiliate_id})
        return affiliate
