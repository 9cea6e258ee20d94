# keyshop/services/inventory_service.py
import logging
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from ..config import Config
from ..exceptions import InsufficientInventory, InvalidState, NotFound, ValidationError
from ..models.inventory import InventoryItem
from ..models.schemas import InventoryBulkItem, InventoryCreateRequest
from ..utils.inventory_helpers import generate_batch_id, parse_bulk_inventory_text, validate_secret_data
from .product_service import ProductService
from .stock_sync_service import StockSyncService

logger = logging.getLogger(__name__)

class InventoryService:
    """Pool of secrets per product and their allocation to order items"""

    def __init__(self, db, product_service: Optional[ProductService] = None,
                 stock_sync: Optional[StockSyncService] = None):
        self.db = db
        self.product_service = product_service or ProductService(db)
        self.stock_sync = stock_sync or StockSyncService(db)

    async def allocate_for_order(self, order_id: UUID, conn=None) -> int:
        """Allocate secrets to every line of an order, all or nothing.

        Rows are taken oldest first with SKIP LOCKED, so concurrent
        allocations for the same product never pick the same secret and
        never wait on each other. Quantity already linked to an order item
        is not allocated again. Returns the number of secrets allocated.
        """
        allocated = 0
        async with self.db.transaction(conn) as conn:
            order_items = await conn.fetch("""
                SELECT id, product_id, quantity
                FROM order_items
                WHERE order_id = $1
                ORDER BY created_at ASC
            """, order_id)

            if not order_items:
                raise NotFound(f"Order {order_id} has no items")

            logger.info(f"Allocating {len(order_items)} items for order {order_id}")

            for order_item in order_items:
                already = await conn.fetchval("""
                    SELECT COUNT(*) FROM inventory_items WHERE order_item_id = $1
                """, order_item['id'])
                needed = order_item['quantity'] - already
                if needed <= 0:
                    continue

                available = await conn.fetch("""
                    SELECT id, secret_data
                    FROM inventory_items
                    WHERE product_id = $1
                      AND is_sold = FALSE
                      AND (account_expires_at IS NULL OR account_expires_at > NOW())
                    ORDER BY created_at ASC
                    LIMIT $2
                    FOR UPDATE SKIP LOCKED
                """, order_item['product_id'], needed)

                if len(available) < needed:
                    raise InsufficientInventory(order_item['product_id'], needed, len(available))

                await conn.execute("""
                    UPDATE inventory_items
                    SET is_sold = TRUE,
                        sold_at = NOW(),
                        order_item_id = $2
                    WHERE id = ANY($1::uuid[])
                """, [row['id'] for row in available], order_item['id'])

                # Delivery keeps its own copy of the secret
                await conn.executemany("""
                    INSERT INTO order_item_deliveries (order_item_id, data, expires_at)
                    VALUES ($1, $2, NOW() + make_interval(days => $3))
                """, [
                    (order_item['id'], row['secret_data'], Config.DELIVERY_WINDOW_DAYS)
                    for row in available
                ])

                allocated += len(available)
                logger.info(
                    f"Allocated {len(available)} secrets of product {order_item['product_id']} "
                    f"to order item {order_item['id']}"
                )

        logger.info(f"Order {order_id} allocation complete ({allocated} secrets)")
        return allocated

    async def refund_inventory(self, order_item_id: UUID, conn=None) -> List[Dict[str, Any]]:
        """Return an order item's secrets to the available pool"""
        async with self.db.connection(conn) as conn:
            rows = await conn.fetch("""
                UPDATE inventory_items
                SET is_sold = FALSE,
                    sold_at = NULL,
                    order_item_id = NULL,
                    notes = CONCAT(COALESCE(notes, ''), ' [REFUNDED: ', NOW()::text, ']')
                WHERE order_item_id = $1
                RETURNING id, product_id
            """, order_item_id)
        if rows:
            logger.info(f"Returned {len(rows)} secrets of order item {order_item_id} to the pool")
        return [dict(row) for row in rows]

    async def add_item(self, data: InventoryCreateRequest) -> InventoryItem:
        """Add one secret to a product"""
        validate_secret_data(data.secret_data)

        async with self.db.transaction() as conn:
            if not await self.product_service.product_exists(data.product_id, conn):
                raise NotFound(f"Product {data.product_id} not found")

            row = await conn.fetchrow("""
                INSERT INTO inventory_items (
                    product_id, secret_data, batch_id, notes,
                    account_expires_at, cost_price, source, is_sold
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, FALSE)
                RETURNING *
            """,
                data.product_id,
                data.secret_data,
                data.batch_id,
                data.notes,
                data.account_expires_at,
                data.cost_price,
                data.source
            )
            await self.stock_sync.sync_product(data.product_id, conn)

        return InventoryItem.model_validate(dict(row))

    async def import_items(self, product_id: UUID,
                           items: Optional[Sequence[Union[str, InventoryBulkItem]]] = None,
                           text: Optional[str] = None) -> Dict[str, Any]:
        """Bulk import from a list of secrets or a pasted block of text"""
        if text:
            items = parse_bulk_inventory_text(text)

        if not items:
            raise ValidationError("Items must be a non-empty list")

        entries = [
            InventoryBulkItem(secret_data=item) if isinstance(item, str) else item
            for item in items
        ]
        for entry in entries:
            validate_secret_data(entry.secret_data)

        batch_id = generate_batch_id()
        added = []

        async with self.db.transaction() as conn:
            if not await self.product_service.product_exists(product_id, conn):
                raise NotFound(f"Product {product_id} not found")

            for entry in entries:
                row = await conn.fetchrow("""
                    INSERT INTO inventory_items (
                        product_id, secret_data, batch_id, notes,
                        account_expires_at, cost_price, source, is_sold
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, FALSE)
                    RETURNING *
                """,
                    product_id,
                    entry.secret_data,
                    batch_id,
                    entry.notes,
                    entry.account_expires_at,
                    entry.cost_price,
                    entry.source
                )
                added.append(InventoryItem.model_validate(dict(row)))

            await self.stock_sync.sync_product(product_id, conn)

        logger.info(f"Bulk added {len(added)} items to product {product_id} (batch {batch_id})")
        return {"batch_id": batch_id, "count": len(added), "items": added}

    async def list_inventory(self, product_id: UUID, show_sold: bool = True,
                             show_expired: bool = False, limit: int = 100,
                             offset: int = 0) -> List[Dict[str, Any]]:
        query = """
            SELECT i.*, p.name AS product_name, p.price AS selling_price
            FROM inventory_items i
            JOIN products p ON p.id = i.product_id
            WHERE i.product_id = $1
        """
        if not show_sold:
            query += " AND i.is_sold = FALSE"
        if not show_expired:
            query += " AND (i.account_expires_at IS NULL OR i.account_expires_at > NOW())"
        query += " ORDER BY i.created_at DESC LIMIT $2 OFFSET $3"

        async with self.db.connection() as conn:
            rows = await conn.fetch(query, product_id, limit, offset)
            return [dict(row) for row in rows]

    async def available_count(self, product_id: UUID, conn=None) -> int:
        async with self.db.connection(conn) as conn:
            return await conn.fetchval("""
                SELECT COUNT(*)
                FROM inventory_items
                WHERE product_id = $1
                  AND is_sold = FALSE
                  AND (account_expires_at IS NULL OR account_expires_at > NOW())
            """, product_id)

    async def delete_item(self, item_id: UUID) -> Dict[str, Any]:
        """Delete an unsold secret"""
        async with self.db.transaction() as conn:
            row = await conn.fetchrow("""
                DELETE FROM inventory_items
                WHERE id = $1 AND is_sold = FALSE
                RETURNING *
            """, item_id)

            if not row:
                exists = await conn.fetchval(
                    "SELECT EXISTS (SELECT 1 FROM inventory_items WHERE id = $1)", item_id
                )
                if exists:
                    raise InvalidState("Cannot delete sold inventory")
                raise NotFound(f"Inventory item {item_id} not found")

            await self.stock_sync.sync_product(row['product_id'], conn)
            return dict(row)

    async def get_stats(self, product_id: Optional[UUID] = None) -> List[Dict[str, Any]]:
        """Per-product totals: available, sold, expired, cost and revenue"""
        query = """
            SELECT
                p.id AS product_id,
                p.name AS product_name,
                COUNT(i.id) AS total_items,
                COUNT(i.id) FILTER (
                    WHERE NOT i.is_sold
                    AND (i.account_expires_at IS NULL OR i.account_expires_at > NOW())
                ) AS available,
                COUNT(i.id) FILTER (WHERE i.is_sold) AS sold,
                COUNT(i.id) FILTER (
                    WHERE NOT i.is_sold AND i.account_expires_at <= NOW()
                ) AS expired,
                COALESCE(SUM(i.cost_price), 0) AS total_cost,
                COALESCE(SUM(p.price) FILTER (WHERE i.is_sold), 0) AS sold_value
            FROM products p
            LEFT JOIN inventory_items i ON i.product_id = p.id
        """
        params = []
        if product_id:
            query += " WHERE p.id = $1"
            params.append(product_id)
        query += " GROUP BY p.id, p.name ORDER BY p.name"

        async with self.db.connection() as conn:
            rows = await conn.fetch(query, *params)
            return [dict(row) for row in rows]

    async def get_expiring(self, days: Optional[int] = None) -> List[Dict[str, Any]]:
        """Unsold secrets whose own shelf-life ends within ``days``"""
        days = days or Config.EXPIRING_INVENTORY_DAYS
        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                SELECT i.*, p.name AS product_name
                FROM inventory_items i
                JOIN products p ON p.id = i.product_id
                WHERE i.is_sold = FALSE
                  AND i.account_expires_at IS NOT NULL
                  AND i.account_expires_at > NOW()
                  AND i.account_expires_at < NOW() + make_interval(days => $1)
                ORDER BY i.account_expires_at ASC
            """, days)
            return [dict(row) for row in rows]
