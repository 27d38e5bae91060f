"""Tests for affiliate registration and administration."""
from decimal import Decimal

import pytest

from core.exceptions import AffiliateNotFoundError, PermissionDeniedError, ValidationError
from database.models import AffiliateStatus, PayoutMethod
from services.affiliates import AffiliateRegistry


def test_build_referral_link():
    assert AffiliateRegistry.build_referral_link("ACME10", "https://shop.example.com/") == \
        "https://shop.example.com?ref=ACME10"
    assert AffiliateRegistry.build_referral_link("ACME10", "https://shop.example.com/?utm=x") == \
        "https://shop.example.com/?utm=x&ref=ACME10"


@pytest.mark.asyncio
async def test_register_starts_pending_with_generated_code(db_session, authorizer):
    registry = AffiliateRegistry(db_session, authorizer)

    affiliate = await registry.register(200, " Partner@Example.com ")

    assert affiliate.status == AffiliateStatus.PENDING.value
    assert affiliate.email == "partner@example.com"
    assert affiliate.payout_email == "partner@example.com"
    assert affiliate.commission_rate == Decimal("10.00")
    assert len(affiliate.affiliate_code) == 8
    assert affiliate.affiliate_code == affiliate.affiliate_code.upper()
    assert affiliate.total_earnings == Decimal("0.00")

    found = await registry.get_by_code(affiliate.affiliate_code.lower())
    assert found.id == affiliate.id
    assert (await registry.get_by_owner(200)).id == affiliate.id


@pytest.mark.asyncio
async def test_register_validation(db_session, affiliate, authorizer):
    registry = AffiliateRegistry(db_session, authorizer)

    with pytest.raises(ValidationError):
        await registry.register(201, "not-an-email")
    with pytest.raises(ValidationError):
        await registry.register(201, "p@example.com", commission_rate=Decimal("150"))
    # One profile per account
    with pytest.raises(ValidationError):
        await registry.register(affiliate.owner_account_id, "again@example.com")


@pytest.mark.asyncio
async def test_register_with_custom_rate_and_bank_payout(db_session, authorizer):
    affiliate = await AffiliateRegistry(db_session, authorizer).register(
        202, "bank@example.com", payout_method=PayoutMethod.BANK_TRANSFER, commission_rate=Decimal("12.50")
    )

    assert affiliate.commission_rate == Decimal("12.50")
    assert affiliate.payout_method == PayoutMethod.BANK_TRANSFER.value
    assert affiliate.payout_email is None


@pytest.mark.asyncio
async def test_set_status(db_session, affiliate, admin, owner, authorizer):
    registry = AffiliateRegistry(db_session, authorizer)

    suspended = await registry.set_status(affiliate.id, "suspended", admin)
    assert suspended.status == AffiliateStatus.SUSPENDED.value

    with pytest.raises(PermissionDeniedError):
        await registry.set_status(affiliate.id, AffiliateStatus.ACTIVE, owner)
    with pytest.raises(ValidationError):
        await registry.set_status(affiliate.id, "retired", admin)
    with pytest.raises(AffiliateNotFoundError):
        await registry.set_status(8888, AffiliateStatus.ACTIVE, admin)


@pytest.mark.asyncio
async def test_update_commission_rate(db_session, affiliate, admin, owner, authorizer):
    registry = AffiliateRegistry(db_session, authorizer)

    updated = await registry.update_commission_rate(affiliate.id, Decimal("7.25"), admin)
    assert updated.commission_rate == Decimal("7.25")

    with pytest.raises(PermissionDeniedError):
        await registry.update_commission_rate(affiliate.id, Decimal("50"), owner)
    with pytest.raises(ValidationError):
        await registry.update_commission_rate(affiliate.id, Decimal("-1"), admin)


@pytest.mark.asyncio
async def test_update_payout_details(db_session, affiliate, owner, stranger, authorizer):
    registry = AffiliateRegistry(db_session, authorizer)

    updated = await registry.update_payout_details(affiliate.id, PayoutMethod.CRYPTO, None, owner)
    assert updated.payout_method == PayoutMethod.CRYPTO.value
    assert updated.payout_email is None

    with pytest.raises(ValidationError):
        await registry.update_payout_details(affiliate.id, PayoutMethod.PAYPAL, None, owner)
    with pytest.raises(PermissionDeniedError):
        await registry.update_payout_details(affiliate.id, PayoutMethod.PAYPAL, "x@example.com", stranger)
