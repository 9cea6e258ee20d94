# keyshop/services/cart_service.py
import logging
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID

from ..exceptions import NotFound, ValidationError
from .product_service import ProductService

logger = logging.getLogger(__name__)

class CartService:
    def __init__(self, db, product_service: ProductService = None):
        self.db = db
        self.product_service = product_service or ProductService(db)

    async def get_or_create_cart(self, user_id: UUID, conn=None) -> Dict[str, Any]:
        async with self.db.connection(conn) as conn:
            await conn.execute("""
                INSERT INTO carts (user_id)
                VALUES ($1)
                ON CONFLICT (user_id) DO NOTHING
            """, user_id)
            cart = await conn.fetchrow("SELECT * FROM carts WHERE user_id = $1", user_id)
            return dict(cart)

    async def get_cart_items(self, user_id: UUID, conn=None) -> List[Dict[str, Any]]:
        """Cart lines joined with the current product name"""
        async with self.db.connection(conn) as conn:
            items = await conn.fetch("""
                SELECT ci.id, ci.product_id, ci.price, ci.quantity,
                       p.name, p.stock
                FROM cart_items ci
                JOIN carts c ON c.id = ci.cart_id
                JOIN products p ON p.id = ci.product_id
                WHERE c.user_id = $1
                ORDER BY ci.created_at ASC
            """, user_id)
            return [dict(item) for item in items]

    async def get_cart(self, user_id: UUID) -> Dict[str, Any]:
        items = await self.get_cart_items(user_id)
        subtotal = sum((item['price'] * item['quantity'] for item in items), Decimal(0))
        return {"items": items, "subtotal": subtotal}

    async def add_item(self, user_id: UUID, product_id: UUID, quantity: int = 1) -> Dict[str, Any]:
        """Add a product, summing with an existing line; price is snapshotted"""
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        async with self.db.transaction() as conn:
            product = await self.product_service.get_product(product_id, conn)
            cart = await self.get_or_create_cart(user_id, conn)

            item = await conn.fetchrow("""
                INSERT INTO cart_items (cart_id, product_id, price, quantity)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (cart_id, product_id)
                DO UPDATE SET quantity = cart_items.quantity + EXCLUDED.quantity,
                              price = EXCLUDED.price
                RETURNING *
            """, cart['id'], product_id, product.price, quantity)

        logger.info(f"User {user_id} added {quantity} x {product.name} to cart")
        return dict(item)

    async def update_item_quantity(self, user_id: UUID, item_id: UUID, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        async with self.db.connection() as conn:
            item = await conn.fetchrow("""
                UPDATE cart_items ci
                SET quantity = $3
                FROM carts c
                WHERE ci.id = $1 AND ci.cart_id = c.id AND c.user_id = $2
                RETURNING ci.*
            """, item_id, user_id, quantity)

        if not item:
            raise NotFound(f"Cart item {item_id} not found")
        return dict(item)

    async def remove_item(self, user_id: UUID, item_id: UUID) -> bool:
        async with self.db.connection() as conn:
            result = await conn.execute("""
                DELETE FROM cart_items ci
                USING carts c
                WHERE ci.id = $1 AND ci.cart_id = c.id AND c.user_id = $2
            """, item_id, user_id)

        if result != "DELETE 1":
            raise NotFound(f"Cart item {item_id} not found")
        return True

    async def clear_cart(self, user_id: UUID, conn=None) -> int:
        async with self.db.connection(conn) as conn:
            result = await conn.execute("""
                DELETE FROM cart_items ci
                USING carts c
                WHERE ci.cart_id = c.id AND c.user_id = $1
            """, user_id)
        return int(result.split()[-1])
