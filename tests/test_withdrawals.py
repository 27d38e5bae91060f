"""Tests for withdrawal requests and settlement."""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from core.exceptions import (
    AffiliateNotActiveError,
    BelowMinimumWithdrawalError,
    InsufficientBalanceError,
    InvalidTransitionError,
    PermissionDeniedError,
    ValidationError,
    WithdrawalNotFoundError,
)
from database.models import AffiliateStatus, PayoutMethod, ReferralStatus, WithdrawalStatus
from services.attribution import AttributionGateway
from services.referral_ledger import ReferralLedger
from services.stats import StatsAggregator
from services.withdrawals import WithdrawalProcessor


async def _earn(session, authorizer, admin, order_amount: str, order_id: str = "ORD-1", code: str = "ACME10"):
    """Attribute and approve one order."""
    referral = await AttributionGateway(session).attribute_referral(code, order_id, Decimal(order_amount))
    await ReferralLedger(session, authorizer).transition(referral.id, ReferralStatus.APPROVED, admin)
    return referral


async def _complete(processor, withdrawal_id, admin, ref="TX-1"):
    await processor.process(withdrawal_id, WithdrawalStatus.PROCESSING, admin)
    return await processor.process(withdrawal_id, WithdrawalStatus.COMPLETED, admin, transaction_ref=ref)


@pytest.mark.asyncio
async def test_request_creates_pending_withdrawal(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1000.00")
    processor = WithdrawalProcessor(db_session, authorizer)

    withdrawal = await processor.request(
        affiliate.id, Decimal("60.00"), PayoutMethod.BANK_TRANSFER, "  DE89 3704 0044 0532 0130 00 ", owner
    )

    assert withdrawal.status == WithdrawalStatus.PENDING.value
    assert withdrawal.amount == Decimal("60.00")
    assert withdrawal.method == PayoutMethod.BANK_TRANSFER.value
    assert withdrawal.payout_destination == "DE89 3704 0044 0532 0130 00"
    # Requesting reserves, it does not decrement
    assert affiliate.total_earnings == Decimal("100.00")
    assert await processor.available_balance(affiliate) == Decimal("40.00")


@pytest.mark.asyncio
async def test_request_validation(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1000.00")
    processor = WithdrawalProcessor(db_session, authorizer)

    with pytest.raises(ValidationError):
        await processor.request(affiliate.id, Decimal("0"), PayoutMethod.PAYPAL, "a@b.com", owner)
    with pytest.raises(ValidationError):
        await processor.request(affiliate.id, Decimal("60.00"), "cheque", "a@b.com", owner)
    with pytest.raises(ValidationError):
        await processor.request(affiliate.id, Decimal("60.00"), PayoutMethod.PAYPAL, "   ", owner)
    with pytest.raises(BelowMinimumWithdrawalError):
        await processor.request(affiliate.id, Decimal("49.99"), PayoutMethod.PAYPAL, "a@b.com", owner)


@pytest.mark.asyncio
async def test_balance_is_checked_before_minimum(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1000.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    affiliate_id = affiliate.id
    await processor.request(affiliate_id, Decimal("60.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    # 40.00 left: under the floor and over the balance
    with pytest.raises(InsufficientBalanceError) as exc_info:
        await processor.request(affiliate_id, Decimal("45.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    assert exc_info.value.available == Decimal("40.00")

    with pytest.raises(BelowMinimumWithdrawalError):
        await processor.request(affiliate_id, Decimal("30.00"), PayoutMethod.PAYPAL, "a@b.com", owner)


@pytest.mark.asyncio
async def test_minimum_is_configurable(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "100.00")
    processor = WithdrawalProcessor(db_session, authorizer, min_withdrawal_amount=Decimal("1.00"))

    withdrawal = await processor.request(affiliate.id, Decimal("5.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    assert withdrawal.amount == Decimal("5.00")


@pytest.mark.asyncio
async def test_request_requires_owner_or_admin(db_session, affiliate, stranger, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1000.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    affiliate_id = affiliate.id

    with pytest.raises(PermissionDeniedError):
        await processor.request(affiliate_id, Decimal("60.00"), PayoutMethod.PAYPAL, "a@b.com", stranger)

    # The refused request rolled back and expired the fixture instance
    withdrawal = await processor.request(affiliate_id, Decimal("60.00"), PayoutMethod.PAYPAL, "a@b.com", admin)
    assert withdrawal.status == WithdrawalStatus.PENDING.value


@pytest.mark.asyncio
async def test_request_requires_active_affiliate(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1000.00")
    affiliate.status = AffiliateStatus.SUSPENDED.value
    await db_session.commit()

    with pytest.raises(AffiliateNotActiveError):
        await WithdrawalProcessor(db_session, authorizer).request(
            affiliate.id, Decimal("60.00"), PayoutMethod.PAYPAL, "a@b.com", owner
        )


@pytest.mark.asyncio
async def test_in_flight_requests_are_reserved(db_session, affiliate, owner, admin, authorizer):
    # 1500 × 10% = 150 available
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)

    await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    with pytest.raises(InsufficientBalanceError) as exc_info:
        await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    assert exc_info.value.available == Decimal("50.00")


@pytest.mark.asyncio
async def test_failed_withdrawal_releases_reservation(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    first = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    failed = await processor.process(first.id, WithdrawalStatus.FAILED, admin, notes="bounced")

    assert failed.status == WithdrawalStatus.FAILED.value
    assert failed.notes == "bounced"
    assert affiliate.total_earnings == Decimal("150.00")
    second = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    assert second.status == WithdrawalStatus.PENDING.value


@pytest.mark.asyncio
async def test_completion_decrements_once(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    completed = await _complete(processor, withdrawal.id, admin, ref="PP-123")

    assert completed.status == WithdrawalStatus.COMPLETED.value
    assert completed.transaction_ref == "PP-123"
    assert completed.completed_at is not None
    assert completed.processed_by == admin.account_id
    assert affiliate.total_earnings == Decimal("50.00")

    # Second completion is refused and changes nothing
    with pytest.raises(InvalidTransitionError):
        await processor.process(withdrawal.id, WithdrawalStatus.COMPLETED, admin, transaction_ref="PP-123")
    await db_session.refresh(affiliate)
    assert affiliate.total_earnings == Decimal("50.00")


@pytest.mark.asyncio
async def test_completion_agrees_with_recompute(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    await _complete(processor, withdrawal.id, admin)

    recomputed = await StatsAggregator(db_session).recompute(affiliate.id)
    await db_session.commit()

    assert recomputed.total_earnings == Decimal("50.00")


@pytest.mark.asyncio
async def test_completion_requires_transaction_ref(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    await processor.process(withdrawal.id, WithdrawalStatus.PROCESSING, admin)

    with pytest.raises(ValidationError):
        await processor.process(withdrawal.id, WithdrawalStatus.COMPLETED, admin, transaction_ref="  ")


@pytest.mark.parametrize("path", [
    [WithdrawalStatus.COMPLETED],
    [WithdrawalStatus.PENDING],
    [WithdrawalStatus.PROCESSING, WithdrawalStatus.PROCESSING],
    [WithdrawalStatus.PROCESSING, WithdrawalStatus.PENDING],
    [WithdrawalStatus.FAILED, WithdrawalStatus.PROCESSING],
    [WithdrawalStatus.FAILED, WithdrawalStatus.COMPLETED],
])
@pytest.mark.asyncio
async def test_illegal_withdrawal_transitions(db_session, affiliate, owner, admin, authorizer, path):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    *legal, illegal = path
    for status in legal:
        await processor.process(withdrawal.id, status, admin)

    with pytest.raises(InvalidTransitionError):
        await processor.process(withdrawal.id, illegal, admin, transaction_ref="TX-1")


@pytest.mark.asyncio
async def test_process_is_admin_only(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    with pytest.raises(PermissionDeniedError):
        await processor.process(withdrawal.id, WithdrawalStatus.PROCESSING, owner)
    with pytest.raises(WithdrawalNotFoundError):
        await processor.process(987654, WithdrawalStatus.PROCESSING, admin)


@pytest.mark.asyncio
async def test_completion_guards_against_reversed_earnings(db_session, affiliate, owner, admin, authorizer):
    referral = await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    await processor.process(withdrawal.id, WithdrawalStatus.PROCESSING, admin)

    # Chargeback while the payout is in flight
    await ReferralLedger(db_session, authorizer).transition(referral.id, ReferralStatus.REJECTED, admin)
    assert affiliate.total_earnings == Decimal("0.00")

    with pytest.raises(InsufficientBalanceError):
        await processor.process(withdrawal.id, WithdrawalStatus.COMPLETED, admin, transaction_ref="TX-1")


@pytest.mark.asyncio
async def test_status_changes_notify(db_session, affiliate, owner, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    notifier = AsyncMock()
    processor = WithdrawalProcessor(db_session, authorizer, notifier)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)

    await _complete(processor, withdrawal.id, admin)

    statuses = [call.args[1].status for call in notifier.withdrawal_status_changed.await_args_list]
    assert len(statuses) == 3
    assert statuses[-1] == WithdrawalStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_list_withdrawals(db_session, affiliate, owner, stranger, admin, authorizer):
    await _earn(db_session, authorizer, admin, "1500.00")
    processor = WithdrawalProcessor(db_session, authorizer)
    first = await processor.request(affiliate.id, Decimal("60.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    await processor.request(affiliate.id, Decimal("70.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    await processor.process(first.id, WithdrawalStatus.FAILED, admin)

    mine = await processor.list_withdrawals(owner, affiliate_id=affiliate.id)
    assert len(mine) == 2
    queue = await processor.list_withdrawals(admin, status="pending")
    assert [w.amount for w in queue] == [Decimal("70.00")]
    assert (await processor.get_withdrawal(first.id, owner)).status == WithdrawalStatus.FAILED.value

    with pytest.raises(PermissionDeniedError):
        await processor.list_withdrawals(owner)
    with pytest.raises(PermissionDeniedError):
        await processor.list_withdrawals(stranger, affiliate_id=affiliate.id)
