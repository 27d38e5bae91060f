"""Withdrawal processor: payout requests and their settlement."""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.dto import validate_dto, WithdrawalRequestDTO, ProcessWithdrawalDTO
from core.exceptions import (
    AffiliateNotActiveError,
    AffiliateNotFoundError,
    BelowMinimumWithdrawalError,
    InsufficientBalanceError,
    InvalidTransitionError,
    ValidationError,
    WithdrawalNotFoundError,
)
from database.base import utcnow
from database.models import (
    Affiliate,
    PayoutMethod,
    Withdrawal,
    WithdrawalStatus,
    IN_FLIGHT_STATUSES,
)
from database.repositories import AffiliateRepository, WithdrawalRepository
from server.config import settings
from services.authorization import Actor, Authorizer
from services.commission import to_money
from services.notifications import AffiliateNotifier

logger = logging.getLogger(__name__)


# Legal edges; completed and failed are terminal
TRANSITIONS = {
    WithdrawalStatus.PENDING.value: {WithdrawalStatus.PROCESSING.value, WithdrawalStatus.FAILED.value},
    WithdrawalStatus.PROCESSING.value: {WithdrawalStatus.COMPLETED.value, WithdrawalStatus.FAILED.value},
}


class WithdrawalProcessor:
    """
    Withdrawal state machine and the only decrementer of `total_earnings`.

    Requests and completions hold the affiliate row lock, so balance checks
    and decrements for one affiliate are serialized while other affiliates
    proceed in parallel.
    """

    def __init__(
        self,
        session: AsyncSession,
        authorizer: Authorizer,
        notifier: Optional[AffiliateNotifier] = None,
        min_withdrawal_amount: Optional[Decimal] = None,
    ):
        self.session = session
        self.authorizer = authorizer
        self.notifier = notifier
        self.min_withdrawal_amount = to_money(
            min_withdrawal_amount if min_withdrawal_amount is not None else settings.min_withdrawal_amount
        )
        self.affiliate_repo = AffiliateRepository(session)
        self.withdrawal_repo = WithdrawalRepository(session)

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        return new_status in TRANSITIONS.get(current_status, ())

    async def available_balance(self, affiliate: Affiliate) -> Decimal:
        """Earnings minus amounts reserved by pending/processing withdrawals."""
        reserved = await self.withdrawal_repo.sum_amount(affiliate.id, IN_FLIGHT_STATUSES)
        return to_money(affiliate.total_earnings - reserved)

    async def request(
        self,
        affiliate_id: int,
        amount: Decimal,
        method: PayoutMethod,
        payout_destination: str,
        actor: Actor,
    ) -> Withdrawal:
        """
        Request a payout.

        Args:
            affiliate_id: Affiliate ID
            amount: Requested amount
            method: paypal/bank_transfer/crypto
            payout_destination: PayPal email, IBAN or wallet address
            actor: Affiliate owner or admin

        Returns:
            Pending withdrawal

        Raises:
            ValidationError: Non-positive amount, unknown method, empty destination
            AffiliateNotFoundError: No such affiliate
            PermissionDeniedError: Caller is neither owner nor admin
            AffiliateNotActiveError: Affiliate is not active
            InsufficientBalanceError: Amount exceeds the available balance
            BelowMinimumWithdrawalError: Covered amount under the configured floor
        """
        dto = validate_dto(
            WithdrawalRequestDTO,
            affiliate_id=affiliate_id,
            amount=amount,
            method=method,
            payout_destination=payout_destination,
        )

        try:
            affiliate = await self.affiliate_repo.get_for_update(dto.affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(dto.affiliate_id)
            self.authorizer.require(
                self.authorizer.can_request_withdrawal(actor, affiliate),
                "request withdrawal"
            )
            if not affiliate.is_active:
                raise AffiliateNotActiveError(affiliate.id, affiliate.status)

            available = await self.available_balance(affiliate)
            if dto.amount > available:
                raise InsufficientBalanceError(available=available, requested=dto.amount)
            # Floor applies only to amounts the balance covers
            if dto.amount < self.min_withdrawal_amount:
                raise BelowMinimumWithdrawalError(self.min_withdrawal_amount, dto.amount)

            withdrawal = await self.withdrawal_repo.create(
                affiliate_id=affiliate.id,
                amount=dto.amount,
                method=dto.method,
                payout_destination=dto.payout_destination,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Withdrawal {withdrawal.id} requested: {dto.amount} for affiliate {affiliate.id} "
            f"(available was {available})",
            extra={"withdrawal_id": withdrawal.id, "affiliate_id": affiliate.id, "amount": str(dto.amount)}
        )

        if self.notifier:
            await self.notifier.withdrawal_status_changed(affiliate, withdrawal)
        return withdrawal

    async def process(
        self,
        withdrawal_id: int,
        new_status: WithdrawalStatus,
        actor: Actor,
        transaction_ref: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Withdrawal:
        """
        Move a withdrawal to a new status (admin only).

        Completion decrements the affiliate's earnings by exactly the
        withdrawal amount in the same transaction as the status write.
        Failing a withdrawal releases its reservation with no balance change.

        Raises:
            PermissionDeniedError: Caller is not an admin
            ValidationError: Completion without a transaction reference
            WithdrawalNotFoundError: No such withdrawal
            InvalidTransitionError: Illegal edge, including re-completing a terminal withdrawal
            InsufficientBalanceError: Earnings no longer cover the amount
        """
        self.authorizer.require(self.authorizer.can_process_withdrawal(actor), "process withdrawals")
        dto = validate_dto(
            ProcessWithdrawalDTO,
            withdrawal_id=withdrawal_id,
            new_status=new_status,
            transaction_ref=transaction_ref,
            notes=notes,
        )
        target = dto.new_status.value
        if target == WithdrawalStatus.COMPLETED.value and not dto.transaction_ref:
            raise ValidationError("transaction_ref", "required to complete a withdrawal")

        try:
            withdrawal = await self.withdrawal_repo.get_by_id(dto.withdrawal_id)
            if not withdrawal:
                raise WithdrawalNotFoundError(dto.withdrawal_id)

            affiliate = await self.affiliate_repo.get_for_update(withdrawal.affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(withdrawal.affiliate_id)
            withdrawal = await self.withdrawal_repo.get_for_update(dto.withdrawal_id)
            if not withdrawal:
                raise WithdrawalNotFoundError(dto.withdrawal_id)

            current = withdrawal.status
            if not self.can_transition(current, target):
                raise InvalidTransitionError("withdrawal", current, target)

            now = utcnow()
            if target == WithdrawalStatus.COMPLETED.value:
                if affiliate.total_earnings < withdrawal.amount:
                    raise InsufficientBalanceError(
                        available=to_money(affiliate.total_earnings),
                        requested=withdrawal.amount,
                    )
                affiliate.total_earnings = to_money(affiliate.total_earnings - withdrawal.amount)
                withdrawal.completed_at = now

            withdrawal.status = target
            if dto.transaction_ref:
                withdrawal.transaction_ref = dto.transaction_ref
            if dto.notes is not None:
                withdrawal.notes = dto.notes
            withdrawal.processed_by = actor.account_id
            if withdrawal.processed_at is None:
                withdrawal.processed_at = now

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            f"Withdrawal {withdrawal.id} {current} → {target} by {actor.account_id}; "
            f"affiliate {affiliate.id} earnings now {affiliate.total_earnings}",
            extra={
                "withdrawal_id": withdrawal.id,
                "affiliate_id": affiliate.id,
                "status": target,
                "amount": str(withdrawal.amount),
            }
        )

        if self.notifier:
            await self.notifier.withdrawal_status_changed(affiliate, withdrawal)
        return withdrawal

    async def get_withdrawal(self, withdrawal_id: int, actor: Actor) -> Withdrawal:
        """Get a withdrawal visible to the caller (admin or owning affiliate)."""
        withdrawal = await self.withdrawal_repo.get_by_id(withdrawal_id)
        if not withdrawal:
            raise WithdrawalNotFoundError(withdrawal_id)
        affiliate = await self.affiliate_repo.get_by_id(withdrawal.affiliate_id)
        self.authorizer.require(
            affiliate is not None and self.authorizer.can_view_affiliate(actor, affiliate),
            "view withdrawal"
        )
        return withdrawal

    async def list_withdrawals(
        self,
        actor: Actor,
        affiliate_id: Optional[int] = None,
        status: Optional[WithdrawalStatus] = None,
        limit: Optional[int] = None,
    ) -> List[Withdrawal]:
        """
        Withdrawals newest first.

        Without `affiliate_id` this is the admin payout queue.
        """
        if affiliate_id is None:
            self.authorizer.require(self.authorizer.can_process_withdrawal(actor), "view payout queue")
        else:
            affiliate = await self.affiliate_repo.get_by_id(affiliate_id)
            if not affiliate:
                raise AffiliateNotFoundError(affiliate_id)
            self.authorizer.require(self.authorizer.can_view_affiliate(actor, affiliate), "view withdrawals")
        if status is not None:
            try:
                status = WithdrawalStatus(status)
            except ValueError as e:
                raise ValidationError("status", f"unknown withdrawal status '{status}'") from e
        return await self.withdrawal_repo.get_filtered(affiliate_id=affiliate_id, status=status, limit=limit)
