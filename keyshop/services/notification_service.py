# keyshop/services/notification_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from telegram import Bot
from telegram.error import TelegramError

from ..config import Config
from ..utils.formatters import format_datetime, format_price

logger = logging.getLogger(__name__)

class AdminNotifier:
    """Operator alerts over Telegram; only logs when no bot token is configured"""

    def __init__(self, token: Optional[str] = None, admin_ids: Optional[List[int]] = None,
                 bot: Optional[Bot] = None):
        token = token if token is not None else Config.TELEGRAM_TOKEN
        self.admin_ids = admin_ids if admin_ids is not None else Config.ADMIN_IDS
        self.bot = bot or (Bot(token) if token else None)

    async def notify(self, text: str) -> int:
        """Send text to every admin chat; returns how many were delivered"""
        if not self.bot or not self.admin_ids:
            logger.warning(f"Admin alert (not sent, Telegram not configured): {text}")
            return 0

        delivered = 0
        for admin_id in self.admin_ids:
            try:
                await self.bot.send_message(chat_id=admin_id, text=text)
                delivered += 1
            except TelegramError as e:
                logger.error(f"Failed to alert admin {admin_id}: {e}")
        return delivered

    async def fulfillment_failed(self, order_id: UUID, reason: str,
                                 amount: Optional[Decimal] = None) -> int:
        text = (
            "⚠️ Paid order could not be fulfilled\n\n"
            f"Order: {order_id}\n"
        )
        if amount is not None:
            text += f"Paid: {format_price(amount)} VND\n"
        text += (
            f"Reason: {reason}\n"
            f"Time: {format_datetime(datetime.now(timezone.utc))}\n\n"
            "Restock the product, then retry fulfillment from the admin API."
        )
        return await self.notify(text)
