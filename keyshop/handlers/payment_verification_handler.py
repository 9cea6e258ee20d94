# keyshop/handlers/payment_verification_handler.py
import logging
from typing import Optional

from aiohttp import web

from ..config import Config
from ..exceptions import Unauthorized
from ..models.schemas import SepayWebhookPayload
from ..utils.security import verify_webhook_api_key
from .base_handler import BaseHandler

logger = logging.getLogger(__name__)

class PaymentVerificationHandler(BaseHandler):
    """Bank transfer notifications from SePay"""

    def __init__(self, services, api_key: Optional[str] = None):
        super().__init__(services)
        self.api_key = api_key if api_key is not None else Config.SEPAY_WEBHOOK_API_KEY

    def setup_routes(self, app: web.Application):
        app.router.add_post("/api/webhooks/sepay", self.sepay_webhook)
        app.router.add_post("/api/webhooks/wallet-deposit", self.deposit_webhook)

    def check_api_key(self, request: web.Request):
        if not self.api_key:
            logger.warning("SEPAY_WEBHOOK_API_KEY is not set; accepting unauthenticated webhook")
            return
        if not verify_webhook_api_key(request.headers.get("Authorization"), self.api_key):
            logger.warning(f"Rejected webhook with bad API key from {request.remote}")
            raise Unauthorized("Invalid webhook API key")

    async def sepay_webhook(self, request: web.Request):
        """Order payment, plus deposit when the content also carries a DEP code"""
        self.check_api_key(request)
        payload = await self.read_model(request, SepayWebhookPayload)
        logger.info(f"SePay webhook: {payload.raw_content!r} amount {payload.received_amount}")
        result = await self.services.payments.handle_sepay_webhook(payload)
        return self.respond_raw(result)

    async def deposit_webhook(self, request: web.Request):
        self.check_api_key(request)
        payload = await self.read_model(request, SepayWebhookPayload)
        logger.info(f"Deposit webhook: {payload.raw_content!r} amount {payload.received_amount}")
        result = await self.services.payments.handle_deposit_webhook(payload)
        return self.respond_raw(result)
