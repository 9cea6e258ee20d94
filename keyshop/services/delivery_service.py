# keyshop/services/delivery_service.py
import logging
from typing import Any, Dict, List
from uuid import UUID

logger = logging.getLogger(__name__)

class DeliveryService:
    """Buyer-visible copies of allocated secrets"""

    def __init__(self, db):
        self.db = db

    async def get_user_deliveries(self, user_id: UUID) -> List[Dict[str, Any]]:
        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                SELECT
                    d.id, d.order_item_id, d.data, d.expires_at, d.created_at,
                    oi.product_id, oi.name AS product_name, oi.price,
                    o.id AS order_id, o.created_at AS order_date
                FROM order_item_deliveries d
                JOIN order_items oi ON oi.id = d.order_item_id
                JOIN orders o ON o.id = oi.order_id
                WHERE o.user_id = $1
                  AND d.expires_at > NOW()
                ORDER BY d.created_at DESC
            """, user_id)
            return [dict(row) for row in rows]

    async def get_order_deliveries(self, order_id: UUID, conn=None) -> List[Dict[str, Any]]:
        async with self.db.connection(conn) as conn:
            rows = await conn.fetch("""
                SELECT
                    d.id, d.order_item_id, d.data, d.expires_at, d.created_at,
                    oi.product_id, oi.name AS product_name
                FROM order_item_deliveries d
                JOIN order_items oi ON oi.id = d.order_item_id
                WHERE oi.order_id = $1
                ORDER BY d.created_at DESC
            """, order_id)
            return [dict(row) for row in rows]

    async def get_expiring_deliveries(self, days: int = 3) -> List[Dict[str, Any]]:
        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                SELECT d.*, o.user_id, oi.name AS product_name
                FROM order_item_deliveries d
                JOIN order_items oi ON oi.id = d.order_item_id
                JOIN orders o ON o.id = oi.order_id
                WHERE d.expires_at > NOW()
                  AND d.expires_at < NOW() + make_interval(days => $1)
                ORDER BY d.expires_at ASC
            """, days)
            return [dict(row) for row in rows]

    async def cleanup_expired_deliveries(self) -> int:
        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                DELETE FROM order_item_deliveries
                WHERE expires_at < NOW()
                RETURNING id
            """)
        logger.info(f"Deleted {len(rows)} expired deliveries")
        return len(rows)
