"""Affiliate notifications sent through the Telegram bot."""
from __future__ import annotations

import logging
from typing import Optional

from aiogram import Bot

from database.models import Affiliate, Referral, Withdrawal, WithdrawalStatus

logger = logging.getLogger(__name__)


WITHDRAWAL_STATUS_TEXT = {
    WithdrawalStatus.PENDING.value: "⏳ received",
    WithdrawalStatus.PROCESSING.value: "🔄 being processed",
    WithdrawalStatus.COMPLETED.value: "✅ paid out",
    WithdrawalStatus.FAILED.value: "❌ failed",
}


class AffiliateNotifier:
    """
    Fire-and-forget notifications to an affiliate's owning account.

    Called after the ledger transaction has committed. Delivery errors are
    logged and swallowed; the ledger never depends on them.
    """

    def __init__(self, bot: Optional[Bot] = None):
        self.bot = bot

    async def _send(self, chat_id: int, text: str) -> bool:
        if self.bot is None:
            logger.debug(f"Notifications disabled, dropping message for {chat_id}")
            return False
        try:
            await self.bot.send_message(chat_id=chat_id, text=text, parse_mode="HTML")
            return True
        except Exception as e:
            logger.error(f"Failed to notify account {chat_id}: {e}", exc_info=True)
            return False

    async def commission_approved(self, affiliate: Affiliate, referral: Referral) -> bool:
        """Tell the affiliate a commission was approved."""
        text = (
            f"🎉 <b>Commission approved!</b>\n\n"
            f"Order: <code>{referral.order_id}</code>\n"
            f"Commission: <b>{referral.commission_amount}</b> ({referral.commission_rate}%)\n"
            f"Balance: <b>{affiliate.total_earnings}</b>"
        )
        return await self._send(affiliate.owner_account_id, text)

    async def withdrawal_status_changed(self, affiliate: Affiliate, withdrawal: Withdrawal) -> bool:
        """Tell the affiliate their withdrawal moved to a new status."""
        status_text = WITHDRAWAL_STATUS_TEXT.get(withdrawal.status, withdrawal.status)
        lines = [
            f"💸 <b>Withdrawal #{withdrawal.id}</b> {status_text}",
            f"Amount: <b>{withdrawal.amount}</b> via {withdrawal.method}",
        ]
        if withdrawal.transaction_ref:
            lines.append(f"Reference: <code>{withdrawal.transaction_ref}</code>")
        if withdrawal.notes:
            lines.append(f"Notes: {withdrawal.notes}")
        return await self._send(affiliate.owner_account_id, "\n".join(lines))
