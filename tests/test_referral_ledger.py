"""Tests for the referral review state machine."""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from core.exceptions import (
    InsufficientBalanceError,
    InvalidTransitionError,
    PermissionDeniedError,
    ReferralNotFoundError,
    ValidationError,
)
from database.models import PayoutMethod, ReferralStatus, WithdrawalStatus
from services.attribution import AttributionGateway
from services.referral_ledger import ReferralLedger
from services.withdrawals import WithdrawalProcessor


async def _referral(session, order_id="ORD-1", amount="500.00"):
    return await AttributionGateway(session).attribute_referral("ACME10", order_id, Decimal(amount))


@pytest.mark.asyncio
async def test_approval_updates_earnings_in_same_transaction(db_session, affiliate, admin, authorizer):
    referral = await _referral(db_session)
    ledger = ReferralLedger(db_session, authorizer)

    updated = await ledger.transition(referral.id, ReferralStatus.APPROVED, admin, notes="looks good")

    assert updated.status == ReferralStatus.APPROVED.value
    assert updated.notes == "looks good"
    assert updated.reviewed_by == admin.account_id
    assert updated.reviewed_at is not None
    assert affiliate.total_earnings == Decimal("50.00")
    assert affiliate.total_referrals == 1


@pytest.mark.asyncio
async def test_full_lifecycle(db_session, affiliate, admin, authorizer):
    referral = await _referral(db_session)
    ledger = ReferralLedger(db_session, authorizer)

    await ledger.transition(referral.id, ReferralStatus.APPROVED, admin)
    paid = await ledger.transition(referral.id, ReferralStatus.PAID, admin)

    assert paid.status == ReferralStatus.PAID.value
    # Paid commission still counts as earned
    assert affiliate.total_earnings == Decimal("50.00")


@pytest.mark.parametrize("path", [
    [ReferralStatus.PAID],
    [ReferralStatus.PENDING],
    [ReferralStatus.REJECTED, ReferralStatus.APPROVED],
    [ReferralStatus.REJECTED, ReferralStatus.REJECTED],
    [ReferralStatus.APPROVED, ReferralStatus.PAID, ReferralStatus.REJECTED],
    [ReferralStatus.APPROVED, ReferralStatus.PAID, ReferralStatus.PAID],
    [ReferralStatus.APPROVED, ReferralStatus.APPROVED],
])
@pytest.mark.asyncio
async def test_illegal_transitions_rejected(db_session, affiliate, admin, authorizer, path):
    referral = await _referral(db_session)
    ledger = ReferralLedger(db_session, authorizer)

    *legal, illegal = path
    for status in legal:
        await ledger.transition(referral.id, status, admin)
    earnings_before = affiliate.total_earnings

    with pytest.raises(InvalidTransitionError):
        await ledger.transition(referral.id, illegal, admin)

    await db_session.refresh(affiliate)
    assert affiliate.total_earnings == earnings_before


@pytest.mark.asyncio
async def test_reversal_removes_commission(db_session, affiliate, admin, authorizer):
    referral = await _referral(db_session)
    ledger = ReferralLedger(db_session, authorizer)
    await ledger.transition(referral.id, ReferralStatus.APPROVED, admin)

    rejected = await ledger.transition(referral.id, ReferralStatus.REJECTED, admin, notes="chargeback")

    assert rejected.status == ReferralStatus.REJECTED.value
    assert affiliate.total_earnings == Decimal("0.00")
    assert affiliate.total_referrals == 1


@pytest.mark.asyncio
async def test_reversal_of_withdrawn_commission_is_refused(db_session, affiliate, owner, admin, authorizer):
    referral = await _referral(db_session, amount="1000.00")
    ledger = ReferralLedger(db_session, authorizer)
    await ledger.transition(referral.id, ReferralStatus.APPROVED, admin)

    processor = WithdrawalProcessor(db_session, authorizer)
    withdrawal = await processor.request(affiliate.id, Decimal("100.00"), PayoutMethod.PAYPAL, "a@b.com", owner)
    await processor.process(withdrawal.id, WithdrawalStatus.PROCESSING, admin)
    await processor.process(withdrawal.id, WithdrawalStatus.COMPLETED, admin, transaction_ref="PP-1")
    assert affiliate.total_earnings == Decimal("0.00")

    with pytest.raises(InsufficientBalanceError):
        await ledger.transition(referral.id, ReferralStatus.REJECTED, admin)

    await db_session.refresh(referral)
    assert referral.status == ReferralStatus.APPROVED.value


@pytest.mark.asyncio
async def test_only_admin_can_review(db_session, affiliate, owner, authorizer):
    referral = await _referral(db_session)
    ledger = ReferralLedger(db_session, authorizer)

    with pytest.raises(PermissionDeniedError):
        await ledger.transition(referral.id, ReferralStatus.APPROVED, owner)

    await db_session.refresh(referral)
    assert referral.status == ReferralStatus.PENDING.value


@pytest.mark.asyncio
async def test_unknown_referral_and_status(db_session, affiliate, admin, authorizer):
    ledger = ReferralLedger(db_session, authorizer)

    with pytest.raises(ReferralNotFoundError):
        await ledger.transition(424242, ReferralStatus.APPROVED, admin)
    with pytest.raises(ValidationError):
        await ledger.transition(1, "refunded", admin)


@pytest.mark.asyncio
async def test_approval_notifies_after_commit(db_session, affiliate, admin, authorizer):
    referral = await _referral(db_session)
    notifier = AsyncMock()
    ledger = ReferralLedger(db_session, authorizer, notifier)

    await ledger.transition(referral.id, ReferralStatus.APPROVED, admin)

    notifier.commission_approved.assert_awaited_once()
    notified_affiliate, notified_referral = notifier.commission_approved.await_args.args
    assert notified_affiliate.total_earnings == Decimal("50.00")
    assert notified_referral.id == referral.id


@pytest.mark.asyncio
async def test_rejection_does_not_notify(db_session, affiliate, admin, authorizer):
    referral = await _referral(db_session)
    notifier = AsyncMock()

    await ReferralLedger(db_session, authorizer, notifier).transition(referral.id, ReferralStatus.REJECTED, admin)

    notifier.commission_approved.assert_not_awaited()


@pytest.mark.asyncio
async def test_list_and_get_referrals_visibility(db_session, affiliate, owner, stranger, admin, authorizer):
    first = await _referral(db_session, "ORD-1")
    await _referral(db_session, "ORD-2")
    ledger = ReferralLedger(db_session, authorizer)
    await ledger.transition(first.id, ReferralStatus.APPROVED, admin)

    assert len(await ledger.list_referrals(affiliate.id, owner)) == 2
    approved = await ledger.list_referrals(affiliate.id, admin, status="approved")
    assert [r.id for r in approved] == [first.id]
    assert (await ledger.get_referral(first.id, owner)).id == first.id

    with pytest.raises(PermissionDeniedError):
        await ledger.list_referrals(affiliate.id, stranger)
    with pytest.raises(PermissionDeniedError):
        await ledger.get_referral(first.id, stranger)
    with pytest.raises(ValidationError):
        await ledger.list_referrals(affiliate.id, owner, status="bogus")
