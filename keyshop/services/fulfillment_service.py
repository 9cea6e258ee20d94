# keyshop/services/fulfillment_service.py
import logging
from typing import Any, Dict
from uuid import UUID

from .inventory_service import InventoryService

logger = logging.getLogger(__name__)

class FulfillmentService:
    """Turns a paid order into delivered secrets.

    Errors from allocation propagate unchanged; the caller decides whether a
    failure after payment is fatal.
    """

    def __init__(self, db, inventory_service: InventoryService = None):
        self.db = db
        self.inventory_service = inventory_service or InventoryService(db)

    async def fulfill_order(self, order_id: UUID, conn=None) -> int:
        logger.info(f"Fulfilling order {order_id}")
        return await self.inventory_service.allocate_for_order(order_id, conn=conn)

    async def get_fulfillment_status(self, order_id: UUID, conn=None) -> Dict[str, Any]:
        """Ordered versus allocated quantity per line.

        Short lines also carry the stock currently available to close the gap.
        """
        async with self.db.connection(conn) as conn:
            rows = await conn.fetch("""
                SELECT oi.id, oi.product_id, oi.name, oi.quantity,
                       COUNT(i.id) AS allocated
                FROM order_items oi
                LEFT JOIN inventory_items i ON i.order_item_id = oi.id
                WHERE oi.order_id = $1
                GROUP BY oi.id, oi.product_id, oi.name, oi.quantity
            """, order_id)

            items = [dict(row) for row in rows]
            for item in items:
                if item['allocated'] < item['quantity']:
                    item['available'] = await self.inventory_service.available_count(
                        item['product_id'], conn
                    )

        return {
            "order_id": order_id,
            "items": items,
            "complete": bool(items) and all(item['allocated'] >= item['quantity'] for item in items),
        }
