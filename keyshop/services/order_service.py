# keyshop/services/order_service.py
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from ..exceptions import EmptyCart, InsufficientBalance, InvalidState, NotFound
from ..models.order import OrderItem, OrderStatus, PaymentMethod, can_transition
from ..models.schemas import CheckoutRequest
from .cart_service import CartService
from .fulfillment_service import FulfillmentService
from .inventory_service import InventoryService
from .payment_service import PaymentService
from .product_service import ProductService
from .voucher_service import VoucherService
from .wallet_service import WalletService

logger = logging.getLogger(__name__)

class OrderService:
    def __init__(self, db,
                 cart_service: Optional[CartService] = None,
                 product_service: Optional[ProductService] = None,
                 voucher_service: Optional[VoucherService] = None,
                 wallet_service: Optional[WalletService] = None,
                 inventory_service: Optional[InventoryService] = None,
                 fulfillment_service: Optional[FulfillmentService] = None,
                 payment_service: Optional[PaymentService] = None):
        self.db = db
        self.product_service = product_service or ProductService(db)
        self.cart_service = cart_service or CartService(db, self.product_service)
        self.voucher_service = voucher_service or VoucherService(db)
        self.wallet_service = wallet_service or WalletService(db)
        self.inventory_service = inventory_service or InventoryService(db, self.product_service)
        self.fulfillment_service = fulfillment_service or FulfillmentService(db, self.inventory_service)
        self.payment_service = payment_service or PaymentService(
            db, self.fulfillment_service, self.wallet_service
        )

    async def checkout(self, user_id: UUID, request: CheckoutRequest) -> Dict[str, Any]:
        """Turn the cart into an order.

        Everything runs in one transaction: voucher redemption, order rows,
        stock counter, and for wallet payments the debit, the paid status and
        fulfillment. Any failure leaves no order, no charge and the cart intact.
        """
        use_wallet = request.use_wallet or request.payment_method == PaymentMethod.WALLET
        payment_method = PaymentMethod.WALLET if use_wallet else request.payment_method

        async with self.db.transaction() as conn:
            items = await self.cart_service.get_cart_items(user_id, conn)
            if not items:
                raise EmptyCart()

            subtotal = sum((item['price'] * item['quantity'] for item in items), Decimal(0))

            voucher = None
            discount = Decimal(0)
            if request.voucher_code:
                voucher, discount = await self.voucher_service.redeem(request.voucher_code, subtotal, conn)

            total = subtotal - discount

            if use_wallet and total > 0:
                balance = await self.wallet_service.get_balance(user_id, conn)
                if balance < total:
                    raise InsufficientBalance(total, balance)

            order = await conn.fetchrow("""
                INSERT INTO orders (user_id, status, total_amount, payment_method)
                VALUES ($1, 'pending', $2, $3)
                RETURNING id, created_at
            """, user_id, total, payment_method.value)
            order_id = order['id']

            await conn.executemany("""
                INSERT INTO order_items (order_id, product_id, name, price, quantity)
                VALUES ($1, $2, $3, $4, $5)
            """, [
                (order_id, item['product_id'], item['name'], item['price'], item['quantity'])
                for item in items
            ])

            for item in items:
                await self.product_service.decrement_stock(item['product_id'], item['quantity'], conn)

            if voucher:
                await self.voucher_service.attach_to_order(order_id, voucher['id'], discount, conn)

            result = {
                "order_id": order_id,
                "subtotal": subtotal,
                "discount": discount,
                "total": total,
                "voucher_code": voucher['code'] if voucher else None,
                "payment_method": payment_method.value,
            }

            if use_wallet or total == 0:
                if total > 0:
                    description = f"Payment for order {order_id}"
                    if voucher:
                        description += f" (Voucher: {voucher['code']})"
                    await self.wallet_service.deduct_from_wallet(
                        user_id, total, description,
                        reference_type="order", reference_id=order_id, conn=conn
                    )

                await conn.execute("""
                    UPDATE orders SET status = 'paid', updated_at = NOW()
                    WHERE id = $1
                """, order_id)

                await self.fulfillment_service.fulfill_order(order_id, conn)
                result["status"] = OrderStatus.PAID.value
            else:
                payment = await self.payment_service.create_transaction(order_id, total, conn)
                result["status"] = OrderStatus.PENDING.value
                result["payment_instructions"] = payment["payment_instructions"]

            await self.cart_service.clear_cart(user_id, conn)

        logger.info(
            f"Order {order_id} created for user {user_id}: {total} via {payment_method.value}, "
            f"status {result['status']}"
        )
        return result

    async def refund_order(self, order_id: UUID, reason: str, admin_id: Optional[UUID] = None) -> Dict[str, Any]:
        """Refund a paid order to the buyer's wallet and return its secrets to the pool"""
        async with self.db.transaction() as conn:
            order = await conn.fetchrow("""
                SELECT id, user_id, total_amount, status, payment_method
                FROM orders
                WHERE id = $1
                FOR UPDATE
            """, order_id)

            if not order:
                raise NotFound(f"Order {order_id} not found")
            if order['status'] == OrderStatus.REFUNDED.value:
                raise InvalidState("Order already refunded")
            if not can_transition(order['status'], OrderStatus.REFUNDED):
                raise InvalidState("Can only refund paid orders")

            await conn.execute("""
                UPDATE orders SET status = 'refunded', updated_at = NOW()
                WHERE id = $1
            """, order_id)

            if order['total_amount'] > 0:
                await self.wallet_service.refund_to_wallet(
                    order['user_id'],
                    order['total_amount'],
                    f"Refund for order {order_id}. Reason: {reason}",
                    reference_type="order_refund",
                    reference_id=order_id,
                    conn=conn
                )

            order_items = await conn.fetch("""
                SELECT id, product_id, quantity FROM order_items WHERE order_id = $1
            """, order_id)

            for item in order_items:
                await self.product_service.restore_stock(item['product_id'], item['quantity'], conn)
                await self.inventory_service.refund_inventory(item['id'], conn)

            await self.voucher_service.release_for_order(order_id, conn)

        logger.info(f"Order {order_id} refunded by {admin_id}: {order['total_amount']} ({reason})")
        return {
            "order_id": order_id,
            "refund_amount": order['total_amount'],
            "message": "Order refunded successfully",
        }

    async def retry_fulfillment(self, order_id: UUID) -> Dict[str, Any]:
        """Re-run fulfillment for a paid order; already delivered lines are skipped"""
        async with self.db.connection() as conn:
            status = await conn.fetchval("SELECT status FROM orders WHERE id = $1", order_id)

        if status is None:
            raise NotFound(f"Order {order_id} not found")
        if status != OrderStatus.PAID.value:
            raise InvalidState("Only paid orders can be fulfilled")

        allocated = await self.fulfillment_service.fulfill_order(order_id)
        logger.info(f"Fulfillment retry for order {order_id} allocated {allocated} secrets")
        return {
            "order_id": order_id,
            "allocated": allocated,
            **await self.fulfillment_service.get_fulfillment_status(order_id),
        }

    async def get_order_detail(self, user_id: UUID, order_id: UUID) -> Dict[str, Any]:
        async with self.db.connection() as conn:
            order = await conn.fetchrow("""
                SELECT id, status, total_amount, payment_method, created_at
                FROM orders
                WHERE id = $1 AND user_id = $2
            """, order_id, user_id)

            if not order:
                raise NotFound(f"Order {order_id} not found")

            order = dict(order)
            items = await conn.fetch("""
                SELECT product_id, name, price, quantity
                FROM order_items
                WHERE order_id = $1
                ORDER BY created_at ASC
            """, order_id)
            order['items'] = [OrderItem.model_validate(dict(item)) for item in items]
            order['subtotal'] = sum((item.total_price for item in order['items']), Decimal(0))

            if order['payment_method'] == PaymentMethod.WALLET.value:
                wallet_tx = await conn.fetchrow("""
                    SELECT id, amount, created_at, status, description
                    FROM wallet_transactions
                    WHERE reference_type = 'order' AND reference_id = $1 AND user_id = $2
                """, str(order_id), user_id)
                order['wallet_transaction'] = dict(wallet_tx) if wallet_tx else None

            voucher = await conn.fetchrow("""
                SELECT v.code, v.description, ov.discount_amount
                FROM order_vouchers ov
                JOIN vouchers v ON v.id = ov.voucher_id
                WHERE ov.order_id = $1
            """, order_id)
            order['voucher'] = dict(voucher) if voucher else None

        return order

    async def get_user_orders(self, user_id: UUID, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        page = max(page, 1)
        async with self.db.connection() as conn:
            orders = await conn.fetch("""
                SELECT id, status, total_amount, payment_method, created_at
                FROM orders
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
            """, user_id, page_size, (page - 1) * page_size)

        return {
            "orders": [dict(order) for order in orders],
            "page": page,
            "page_size": page_size,
        }

    async def get_user_order_stats(self, user_id: UUID) -> Dict[str, Any]:
        async with self.db.connection() as conn:
            stats = await conn.fetchrow("""
                SELECT
                    COUNT(*) AS total_orders,
                    COUNT(*) FILTER (WHERE status = 'pending') AS pending_orders,
                    COUNT(*) FILTER (WHERE status = 'paid') AS paid_orders,
                    COUNT(*) FILTER (WHERE status = 'refunded') AS refunded_orders,
                    COALESCE(SUM(total_amount) FILTER (WHERE status = 'paid'), 0) AS total_spent,
                    COUNT(*) FILTER (WHERE payment_method = 'wallet') AS wallet_payments,
                    COUNT(*) FILTER (WHERE payment_method <> 'wallet') AS external_payments
                FROM orders
                WHERE user_id = $1
            """, user_id)
            return dict(stats)
