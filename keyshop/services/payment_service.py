# keyshop/services/payment_service.py
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID

from ..exceptions import AmountMismatch, NotFound, ShopError, ValidationError
from ..models.schemas import SepayWebhookPayload
from ..models.transaction import PaymentStatus
from ..utils.payment_codes import extract_deposit_code, extract_order_code, order_payment_code, payment_instructions
from .fulfillment_service import FulfillmentService
from .notification_service import AdminNotifier
from .wallet_service import WalletService

logger = logging.getLogger(__name__)

class PaymentService:
    """External provider payments and their webhook reconciliation"""

    def __init__(self, db, fulfillment_service: FulfillmentService = None,
                 wallet_service: WalletService = None, notifier: AdminNotifier = None):
        self.db = db
        self.fulfillment_service = fulfillment_service or FulfillmentService(db)
        self.wallet_service = wallet_service or WalletService(db)
        self.notifier = notifier or AdminNotifier()

    async def create_transaction(self, order_id: UUID, amount: Decimal, conn=None) -> Dict[str, Any]:
        """Pending provider transaction for an order, keyed by its payment code"""
        code = order_payment_code(order_id)
        async with self.db.connection(conn) as conn:
            transaction = await conn.fetchrow("""
                INSERT INTO transactions (order_id, provider, amount, status, meta)
                VALUES ($1, 'sepay', $2, 'pending', $3::jsonb)
                RETURNING id, order_id, amount, status
            """, order_id, amount, json.dumps({"code": code}))

        return {
            "transaction": dict(transaction),
            "payment_instructions": payment_instructions(amount, code),
        }

    async def handle_order_webhook(self, payload: SepayWebhookPayload) -> Dict[str, Any]:
        """Confirm an order payment, then fulfil it.

        Payment confirmation commits on its own. A fulfillment failure after
        that is reported to operators and acknowledged with fulfilled=False.
        """
        code = extract_order_code(payload.raw_content)
        if not code:
            raise ValidationError("No order code found in transfer content")

        received = payload.received_amount

        async with self.db.transaction() as conn:
            transaction = await conn.fetchrow("""
                SELECT id, order_id, amount, status
                FROM transactions
                WHERE meta->>'code' = $1
                FOR UPDATE
            """, code)

            if not transaction:
                raise NotFound(f"Transaction {code} not found")

            if transaction['status'] == PaymentStatus.SUCCESS.value:
                logger.info(f"Duplicate webhook for {code} ignored")
                return {
                    "success": True,
                    "message": "Payment already processed",
                    "order_id": transaction['order_id'],
                }

            if transaction['status'] == PaymentStatus.FAILED.value:
                logger.info(f"Webhook for already failed {code} ignored")
                return {
                    "success": True,
                    "message": "Payment already marked as failed",
                    "order_id": transaction['order_id'],
                    "status": PaymentStatus.FAILED.value,
                }

            if payload.status and payload.status.lower() != PaymentStatus.SUCCESS.value:
                await conn.execute("""
                    UPDATE transactions
                    SET status = 'failed', provider_tx_id = $2, updated_at = NOW()
                    WHERE id = $1
                """, transaction['id'], payload.provider_tx_id)
                logger.warning(f"Provider reported {payload.status} for {code}; transaction failed")
                return {
                    "success": True,
                    "message": "Payment marked as failed",
                    "order_id": transaction['order_id'],
                    "status": PaymentStatus.FAILED.value,
                }

            if received < transaction['amount']:
                logger.warning(
                    f"Underpayment for {code}: expected {transaction['amount']}, got {received}"
                )
                raise AmountMismatch(transaction['amount'], received)

            await conn.execute("""
                UPDATE transactions
                SET status = 'success', provider_tx_id = $2, updated_at = NOW()
                WHERE id = $1
            """, transaction['id'], payload.provider_tx_id)

            result = await conn.execute("""
                UPDATE orders
                SET status = 'paid', updated_at = NOW()
                WHERE id = $1 AND status = 'pending'
            """, transaction['order_id'])
            if result != "UPDATE 1":
                logger.warning(f"Order {transaction['order_id']} was not pending when {code} was paid")

        order_id = transaction['order_id']
        logger.info(f"Order {order_id} paid via {code} ({received})")

        fulfilled = True
        try:
            await self.fulfillment_service.fulfill_order(order_id)
        except ShopError as e:
            fulfilled = False
            logger.critical(f"Order {order_id} is paid but could not be fulfilled: {e.message}")
            await self.notifier.fulfillment_failed(order_id, e.message, received)
        except Exception as e:
            fulfilled = False
            logger.critical(f"Order {order_id} is paid but fulfillment crashed: {e}", exc_info=True)
            await self.notifier.fulfillment_failed(order_id, str(e) or type(e).__name__, received)

        return {
            "success": True,
            "message": "Payment confirmed" if fulfilled else "Payment confirmed, fulfillment pending",
            "order_id": order_id,
            "fulfilled": fulfilled,
        }

    async def handle_deposit_webhook(self, payload: SepayWebhookPayload) -> Dict[str, Any]:
        return await self.wallet_service.handle_deposit_webhook(payload)

    async def handle_sepay_webhook(self, payload: SepayWebhookPayload) -> Dict[str, Any]:
        """Run the order and deposit flows for whichever codes the content carries.

        The flows are independent: one failing never stops the other. The
        first error is raised only when every attempted flow failed.
        """
        content = payload.raw_content
        has_order_code = extract_order_code(content) is not None
        has_deposit_code = extract_deposit_code(content) is not None

        if not has_order_code and not has_deposit_code:
            logger.warning(f"Webhook without a payment code: {content!r}")
            raise ValidationError("No payment code found in transfer content")

        results: Dict[str, Any] = {}
        errors: List[ShopError] = []

        if has_order_code:
            try:
                results["order"] = await self.handle_order_webhook(payload)
            except ShopError as e:
                logger.warning(f"Order webhook rejected: {e.message}")
                errors.append(e)

        if has_deposit_code:
            try:
                results["deposit"] = await self.handle_deposit_webhook(payload)
            except ShopError as e:
                logger.warning(f"Deposit webhook rejected: {e.message}")
                errors.append(e)

        if not results:
            raise errors[0]

        return {
            "success": True,
            "message": "; ".join(result["message"] for result in results.values()),
            **results,
        }
