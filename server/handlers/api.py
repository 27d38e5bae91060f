"""
REST API for the affiliate ledger.

Public: visit tracking and the leaderboard. Internal (API key): order
attribution. Everything else needs a WebApp identity; admin-only checks are
made by the services through the injected Authorizer.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from aiohttp import web

from core.dto import validate_dto, VisitContextDTO
from core.exceptions import AffiliateNotFoundError, ValidationError
from database.models import Affiliate, Referral, Withdrawal
from server.config import settings
from server.keys import AUTHORIZER, LEADERBOARD_CACHE, NOTIFIER, SESSION_FACTORY
from services.affiliates import AffiliateRegistry
from services.attribution import AttributionGateway
from services.authorization import Actor
from services.referral_ledger import ReferralLedger
from services.stats import AffiliateStatsService
from services.withdrawals import WithdrawalProcessor

logger = logging.getLogger(__name__)


def setup_routes(app: web.Application):
    """Setup all API routes."""
    app.router.add_get('/health', health_check)

    # Public
    app.router.add_post('/api/visits', record_visit)
    app.router.add_get('/api/leaderboard', get_leaderboard)

    # Order backend
    app.router.add_post('/api/internal/referrals', attribute_referral)

    # Affiliate
    app.router.add_post('/api/affiliates', register_affiliate)
    app.router.add_get('/api/affiliates/me', get_my_affiliate)
    app.router.add_post('/api/affiliates/me/payout', update_payout_details)
    app.router.add_get('/api/stats', get_stats)
    app.router.add_get('/api/referrals', list_referrals)
    app.router.add_get('/api/withdrawals', list_withdrawals)
    app.router.add_post('/api/withdrawals', request_withdrawal)

    # Admin
    app.router.add_post('/api/admin/referrals/{referral_id}/review', review_referral)
    app.router.add_get('/api/admin/withdrawals', list_withdrawals)
    app.router.add_post('/api/admin/withdrawals/{withdrawal_id}/process', process_withdrawal)
    app.router.add_post('/api/admin/affiliates/{affiliate_id}/status', set_affiliate_status)
    app.router.add_post('/api/admin/affiliates/{affiliate_id}/commission-rate', update_commission_rate)


# ========== Helpers ==========

def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def affiliate_to_dict(affiliate: Affiliate) -> Dict[str, Any]:
    return {
        "id": affiliate.id,
        "affiliate_code": affiliate.affiliate_code,
        "referral_link": AffiliateRegistry.build_referral_link(affiliate.affiliate_code),
        "status": affiliate.status,
        "email": affiliate.email,
        "commission_rate": _money(affiliate.commission_rate),
        "total_earnings": _money(affiliate.total_earnings),
        "total_referrals": affiliate.total_referrals,
        "total_visits": affiliate.total_visits,
        "payout_method": affiliate.payout_method,
        "payout_email": affiliate.payout_email,
        "created_at": _iso(affiliate.created_at),
    }


def referral_to_dict(referral: Referral) -> Dict[str, Any]:
    return {
        "id": referral.id,
        "affiliate_id": referral.affiliate_id,
        "order_id": referral.order_id,
        "order_amount": _money(referral.order_amount),
        "commission_rate": _money(referral.commission_rate),
        "commission_amount": _money(referral.commission_amount),
        "status": referral.status,
        "conversion_type": referral.conversion_type,
        "notes": referral.notes,
        "reviewed_at": _iso(referral.reviewed_at),
        "created_at": _iso(referral.created_at),
    }


def withdrawal_to_dict(withdrawal: Withdrawal) -> Dict[str, Any]:
    return {
        "id": withdrawal.id,
        "affiliate_id": withdrawal.affiliate_id,
        "amount": _money(withdrawal.amount),
        "method": withdrawal.method,
        "payout_destination": withdrawal.payout_destination,
        "status": withdrawal.status,
        "transaction_ref": withdrawal.transaction_ref,
        "notes": withdrawal.notes,
        "requested_at": _iso(withdrawal.requested_at),
        "processed_at": _iso(withdrawal.processed_at),
        "completed_at": _iso(withdrawal.completed_at),
    }


async def _read_json(request: web.Request) -> Dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as e:
        raise ValidationError("body", "invalid JSON") from e
    if not isinstance(data, dict):
        raise ValidationError("body", "expected a JSON object")
    return data


def _int_param(raw: Optional[str], name: str) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(name, "must be an integer") from e


def _require_actor(request: web.Request) -> Actor:
    actor = request.get('actor')
    if actor is None:
        raise web.HTTPUnauthorized(
            text='{"error": "Authentication required"}',
            content_type='application/json'
        )
    return actor


def _client_ip(request: web.Request) -> Optional[str]:
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote


# ========== Public ==========

async def health_check(request: web.Request):
    """Health check endpoint."""
    return web.json_response({
        "status": "ok",
        "time": datetime.now(timezone.utc).isoformat()
    })


async def record_visit(request: web.Request):
    """Track a referral-link hit. Always answers 200."""
    try:
        data = await _read_json(request)
    except ValidationError:
        data = {}

    context_fields = {
        "page_url": data.get("page_url"),
        "referrer": data.get("referrer") or request.headers.get('Referer'),
        "user_agent": data.get("user_agent") or request.headers.get('User-Agent'),
        "ip_address": _client_ip(request),
        "country": data.get("country"),
    }
    try:
        context = validate_dto(VisitContextDTO, **context_fields)
    except ValidationError as e:
        logger.warning(f"Dropping malformed visit context: {e.message}")
        context = VisitContextDTO(ip_address=context_fields["ip_address"])

    code = data.get("code") or request.query.get("ref")
    async with request.app[SESSION_FACTORY]() as session:
        visit_id = await AttributionGateway(session).record_visit(
            code if isinstance(code, str) else None,
            context,
        )
    return web.json_response({"visit_id": visit_id})


async def get_leaderboard(request: web.Request):
    """Ranked affiliates; earnings are only shown to admins."""
    actor = request.get('actor')
    authorizer = request.app[AUTHORIZER]
    reveal = actor is not None and authorizer.is_admin(actor)

    limit = _int_param(request.query.get("limit"), "limit") or settings.leaderboard_default_limit
    view = await request.app[LEADERBOARD_CACHE].get(
        period=request.query.get("period", "all"),
        limit=min(limit, settings.leaderboard_max_limit),
        metric=request.query.get("metric", "earnings"),
        reveal_earnings=reveal,
    )
    return web.json_response(view.to_dict())


# ========== Internal ==========

async def attribute_referral(request: web.Request):
    """Attribute a completed order (called by the order backend)."""
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        referral = await AttributionGateway(session).attribute_referral(
            code=data.get("code"),
            order_id=data.get("order_id"),
            order_amount=data.get("order_amount"),
            conversion_type=data.get("conversion_type", "purchase"),
            referred_account_id=data.get("referred_account_id"),
        )
    return web.json_response(referral_to_dict(referral))


# ========== Affiliate ==========

async def register_affiliate(request: web.Request):
    """Register the caller as an affiliate."""
    actor = _require_actor(request)
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        affiliate = await AffiliateRegistry(session, request.app[AUTHORIZER]).register(
            owner_account_id=actor.account_id,
            email=data.get("email"),
            payout_email=data.get("payout_email"),
            payout_method=data.get("payout_method", "paypal"),
        )
    return web.json_response(affiliate_to_dict(affiliate), status=201)


async def get_my_affiliate(request: web.Request):
    """Caller's affiliate profile and referral link."""
    actor = _require_actor(request)
    async with request.app[SESSION_FACTORY]() as session:
        affiliate = await AffiliateRegistry(session, request.app[AUTHORIZER]).get_by_owner(actor.account_id)
    if not affiliate:
        raise AffiliateNotFoundError()
    return web.json_response(affiliate_to_dict(affiliate))


async def update_payout_details(request: web.Request):
    """Change where the caller's affiliate gets paid."""
    actor = _require_actor(request)
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        registry = AffiliateRegistry(session, request.app[AUTHORIZER])
        affiliate = await registry.get_by_owner(actor.account_id)
        if not affiliate:
            raise AffiliateNotFoundError()
        affiliate = await registry.update_payout_details(
            affiliate.id,
            payout_method=data.get("payout_method"),
            payout_email=data.get("payout_email"),
            actor=actor,
        )
    return web.json_response(affiliate_to_dict(affiliate))


async def get_stats(request: web.Request):
    """Stats for the caller's affiliate, or any affiliate for admins."""
    actor = _require_actor(request)
    affiliate_id = _int_param(request.query.get("affiliate_id"), "affiliate_id")
    async with request.app[SESSION_FACTORY]() as session:
        stats = await AffiliateStatsService(session, request.app[AUTHORIZER]).get_affiliate_stats(
            actor, affiliate_id
        )
    return web.json_response(stats.to_dict())


async def _resolve_affiliate_id(request: web.Request, session, actor: Actor) -> int:
    affiliate_id = _int_param(request.query.get("affiliate_id"), "affiliate_id")
    if affiliate_id is not None:
        return affiliate_id
    affiliate = await AffiliateRegistry(session, request.app[AUTHORIZER]).get_by_owner(actor.account_id)
    if not affiliate:
        raise AffiliateNotFoundError()
    return affiliate.id


async def list_referrals(request: web.Request):
    """Referrals of the caller's affiliate (or `affiliate_id` for admins)."""
    actor = _require_actor(request)
    async with request.app[SESSION_FACTORY]() as session:
        affiliate_id = await _resolve_affiliate_id(request, session, actor)
        referrals = await ReferralLedger(session, request.app[AUTHORIZER]).list_referrals(
            affiliate_id, actor, status=request.query.get("status") or None
        )
    return web.json_response({"referrals": [referral_to_dict(r) for r in referrals]})


async def list_withdrawals(request: web.Request):
    """Withdrawal history, or the admin payout queue under /api/admin/."""
    actor = _require_actor(request)
    status = request.query.get("status") or None
    limit = _int_param(request.query.get("limit"), "limit")
    async with request.app[SESSION_FACTORY]() as session:
        processor = WithdrawalProcessor(session, request.app[AUTHORIZER])
        if request.path.startswith('/api/admin/'):
            affiliate_id = _int_param(request.query.get("affiliate_id"), "affiliate_id")
        else:
            affiliate_id = await _resolve_affiliate_id(request, session, actor)
        withdrawals = await processor.list_withdrawals(
            actor, affiliate_id=affiliate_id, status=status, limit=limit
        )
    return web.json_response({"withdrawals": [withdrawal_to_dict(w) for w in withdrawals]})


async def request_withdrawal(request: web.Request):
    """Request a payout from the caller's affiliate balance."""
    actor = _require_actor(request)
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        affiliate_id = data.get("affiliate_id")
        if affiliate_id is None:
            affiliate = await AffiliateRegistry(session, request.app[AUTHORIZER]).get_by_owner(actor.account_id)
            if not affiliate:
                raise AffiliateNotFoundError()
            affiliate_id = affiliate.id

        withdrawal = await WithdrawalProcessor(
            session, request.app[AUTHORIZER], request.app[NOTIFIER]
        ).request(
            affiliate_id=affiliate_id,
            amount=data.get("amount"),
            method=data.get("method"),
            payout_destination=data.get("payout_destination"),
            actor=actor,
        )
    return web.json_response(withdrawal_to_dict(withdrawal), status=201)


# ========== Admin ==========

async def review_referral(request: web.Request):
    """Approve, reject or mark a referral paid."""
    actor = _require_actor(request)
    referral_id = _int_param(request.match_info["referral_id"], "referral_id")
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        referral = await ReferralLedger(
            session, request.app[AUTHORIZER], request.app[NOTIFIER]
        ).transition(
            referral_id,
            data.get("status"),
            actor,
            notes=data.get("notes"),
        )
    return web.json_response(referral_to_dict(referral))


async def process_withdrawal(request: web.Request):
    """Move a withdrawal to processing, completed or failed."""
    actor = _require_actor(request)
    withdrawal_id = _int_param(request.match_info["withdrawal_id"], "withdrawal_id")
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        withdrawal = await WithdrawalProcessor(
            session, request.app[AUTHORIZER], request.app[NOTIFIER]
        ).process(
            withdrawal_id,
            data.get("status"),
            actor,
            transaction_ref=data.get("transaction_ref"),
            notes=data.get("notes"),
        )
    return web.json_response(withdrawal_to_dict(withdrawal))


async def set_affiliate_status(request: web.Request):
    """Approve, suspend or reject an affiliate."""
    actor = _require_actor(request)
    affiliate_id = _int_param(request.match_info["affiliate_id"], "affiliate_id")
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        affiliate = await AffiliateRegistry(session, request.app[AUTHORIZER]).set_status(
            affiliate_id, data.get("status"), actor
        )
    return web.json_response(affiliate_to_dict(affiliate))


async def update_commission_rate(request: web.Request):
    """Change an affiliate's commission rate for future referrals."""
    actor = _require_actor(request)
    affiliate_id = _int_param(request.match_info["affiliate_id"], "affiliate_id")
    data = await _read_json(request)
    async with request.app[SESSION_FACTORY]() as session:
        affiliate = await AffiliateRegistry(session, request.app[AUTHORIZER]).update_commission_rate(
            affiliate_id, data.get("commission_rate"), actor
        )
    return web.json_response(affiliate_to_dict(affiliate))
