# keyshop/services/stock_sync_service.py
import logging
from typing import Any, Dict, List
from uuid import UUID
from ..exceptions import NotFound

logger = logging.getLogger(__name__)

# Live availability: unsold and not past its own shelf-life
AVAILABLE_COUNT_SQL = """
    SELECT COUNT(*)
    FROM inventory_items i
    WHERE i.product_id = p.id
      AND i.is_sold = FALSE
      AND (i.account_expires_at IS NULL OR i.account_expires_at > NOW())
"""

class StockSyncService:
    """Recomputes products.stock from live inventory; idempotent"""

    def __init__(self, db):
        self.db = db

    async def sync_all(self, conn=None) -> List[Dict[str, Any]]:
        async with self.db.connection(conn) as conn:
            rows = await conn.fetch(f"""
                UPDATE products p
                SET stock = ({AVAILABLE_COUNT_SQL})
                RETURNING p.id, p.name, p.stock
            """)
        logger.info(f"Stock synced for {len(rows)} products")
        return [dict(row) for row in rows]

    async def sync_product(self, product_id: UUID, conn=None) -> Dict[str, Any]:
        async with self.db.connection(conn) as conn:
            row = await conn.fetchrow(f"""
                UPDATE products p
                SET stock = ({AVAILABLE_COUNT_SQL})
                WHERE p.id = $1
                RETURNING p.id, p.name, p.stock
            """, product_id)
        if not row:
            raise NotFound(f"Product {product_id} not found")
        logger.info(f"Stock synced for {row['name']}: {row['stock']}")
        return dict(row)
