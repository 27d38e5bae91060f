"""Attribution gateway: referral-link visits and order attribution."""
import logging
import re
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.dto import validate_dto, AttributeReferralDTO, VisitContextDTO
from core.exceptions import UnknownAffiliateError
from database.models import ConversionType, Referral
from database.repositories import AffiliateRepository, ReferralRepository, VisitRepository
from database.repositories.affiliate import normalize_code
from services.commission import calculate_commission
from services.stats import StatsAggregator

logger = logging.getLogger(__name__)


MOBILE_UA = re.compile(r"Mobile|Android|iPhone|iPad")

# First match wins; Edge and Opera UAs also contain "Chrome", Chrome's contains "Safari"
BROWSER_MARKERS = (
    ("Edg", "Edge"),
    ("OPR", "Opera"),
    ("Firefox", "Firefox"),
    ("Chrome", "Chrome"),
    ("Safari", "Safari"),
)


def classify_device(user_agent: Optional[str]) -> Optional[str]:
    """Coarse device class from a User-Agent: mobile or desktop."""
    if not user_agent:
        return None
    return "mobile" if MOBILE_UA.search(user_agent) else "desktop"


def classify_browser(user_agent: Optional[str]) -> Optional[str]:
    """Browser family from a User-Agent."""
    if not user_agent:
        return None
    for marker, name in BROWSER_MARKERS:
        if marker in user_agent:
            return name
    return "Other"


class AttributionGateway:
    """
    Records visits and turns completed orders into referrals.

    Attribution is idempotent per (affiliate, order): resubmitting an order
    returns the referral created the first time.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.affiliate_repo = AffiliateRepository(session)
        self.referral_repo = ReferralRepository(session)
        self.visit_repo = VisitRepository(session)
        self.stats = StatsAggregator(session)

    async def record_visit(
        self,
        code: Optional[str],
        context: Optional[VisitContextDTO] = None
    ) -> Optional[int]:
        """
        Record a hit on a referral link.

        Unknown or inactive codes produce an unattributed visit. Store errors
        are logged and swallowed so visit tracking never fails the visitor.

        Only the visit row is written. The affiliate row is never locked or
        updated here; `total_visits` catches up on the next recompute or
        visit-total sync.

        Args:
            code: Referral code as submitted (may be empty)
            context: Page/referrer/user-agent context

        Returns:
            Visit ID, or None if the visit could not be stored
        """
        context = context or VisitContextDTO()
        raw_code = code.strip()[:64] if code and code.strip() else None

        try:
            affiliate = None
            if raw_code:
                affiliate = await self.affiliate_repo.get_by_code(raw_code, active_only=True)

            visit = await self.visit_repo.create(
                affiliate_id=affiliate.id if affiliate else None,
                affiliate_code=raw_code,
                page_url=context.page_url,
                referrer=context.referrer,
                user_agent=context.user_agent,
                ip_address=context.ip_address,
                country=context.country,
                device_type=context.device_type or classify_device(context.user_agent),
                browser=context.browser or classify_browser(context.user_agent),
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to record visit for code '{raw_code}': {e}", exc_info=True)
            return None

        if affiliate:
            logger.debug(
                f"Visit {visit.id} attributed to affiliate {affiliate.id}",
                extra={"visit_id": visit.id, "affiliate_id": affiliate.id}
            )
        else:
            logger.debug(f"Unattributed visit {visit.id} (code={raw_code!r})", extra={"visit_id": visit.id})
        return visit.id

    async def attribute_referral(
        self,
        code: str,
        order_id: str,
        order_amount: Decimal,
        conversion_type: ConversionType = ConversionType.PURCHASE,
        referred_account_id: Optional[int] = None,
    ) -> Referral:
        """
        Attribute a completed order to the affiliate owning `code`.

        Args:
            code: Referral code
            order_id: External order identifier
            order_amount: Order total
            conversion_type: signup/purchase/subscription
            referred_account_id: Referred customer's account, if known

        Returns:
            The new pending referral, or the existing one for this order

        Raises:
            ValidationError: Malformed input
            UnknownAffiliateError: Code missing or affiliate not active
        """
        dto = validate_dto(
            AttributeReferralDTO,
            code=code,
            order_id=order_id,
            order_amount=order_amount,
            conversion_type=conversion_type,
            referred_account_id=referred_account_id,
        )

        try:
            return await self._attribute(dto)
        except IntegrityError:
            # Lost the insert race for this order: the winner's row is committed
            await self.session.rollback()
            logger.info(f"Concurrent attribution of order {dto.order_id}, returning existing referral")
            existing = await self._find_existing(dto)
            await self.session.commit()
            if existing is None:
                raise
            return existing
        except Exception:
            await self.session.rollback()
            raise

    async def _attribute(self, dto: AttributeReferralDTO) -> Referral:
        affiliate = await self.affiliate_repo.get_by_code(dto.code, active_only=True)
        if not affiliate:
            raise UnknownAffiliateError(normalize_code(dto.code))

        # Serialize attributions per affiliate and re-check status under the lock
        affiliate = await self.affiliate_repo.get_for_update(affiliate.id)
        if not affiliate or not affiliate.is_active:
            raise UnknownAffiliateError(normalize_code(dto.code))

        existing = await self.referral_repo.get_by_affiliate_and_order(affiliate.id, dto.order_id)
        if existing:
            await self.session.commit()
            logger.info(
                f"Order {dto.order_id} already attributed to affiliate {affiliate.id} (referral {existing.id})",
                extra={"referral_id": existing.id, "order_id": dto.order_id}
            )
            return existing

        quote = calculate_commission(dto.order_amount, affiliate.commission_rate)
        referral = await self.referral_repo.create(
            affiliate_id=affiliate.id,
            order_id=dto.order_id,
            order_amount=dto.order_amount,
            commission_rate=quote.rate,
            commission_amount=quote.amount,
            conversion_type=dto.conversion_type,
            referred_account_id=dto.referred_account_id,
        )

        visit = await self.visit_repo.get_latest_unconverted(affiliate.id)
        if visit:
            visit.converted = True

        await self.stats.recompute(affiliate.id)
        await self.session.commit()

        logger.info(
            f"Attributed order {dto.order_id} ({dto.order_amount}) to affiliate {affiliate.id}: "
            f"commission {quote.amount} at {quote.rate}%",
            extra={
                "affiliate_id": affiliate.id,
                "referral_id": referral.id,
                "order_id": dto.order_id,
                "amount": str(quote.amount),
            }
        )
        return referral

    async def _find_existing(self, dto: AttributeReferralDTO) -> Optional[Referral]:
        affiliate = await self.affiliate_repo.get_by_code(dto.code)
        if not affiliate:
            return None
        return await self.referral_repo.get_by_affiliate_and_order(affiliate.id, dto.order_id)
