# keyshop/services/product_service.py
from uuid import UUID
from ..exceptions import NotFound
from ..models.product import Product

class ProductService:
    def __init__(self, db):
        self.db = db

    async def get_product(self, product_id: UUID, conn=None) -> Product:
        """Fetch an active product or raise NotFound"""
        async with self.db.connection(conn) as conn:
            product = await conn.fetchrow("""
                SELECT id, name, slug, price, stock, is_active, created_at, updated_at
                FROM products
                WHERE id = $1 AND is_active = true
            """, product_id)
            if not product:
                raise NotFound(f"Product {product_id} not found")
            return Product.model_validate(dict(product))

    async def decrement_stock(self, product_id: UUID, quantity: int, conn=None) -> bool:
        """Best-effort decrement of the denormalized counter; never goes negative"""
        async with self.db.connection(conn) as conn:
            result = await conn.execute("""
                UPDATE products
                SET stock = stock - $2
                WHERE id = $1 AND stock >= $2
            """, product_id, quantity)
            return result == "UPDATE 1"

    async def restore_stock(self, product_id: UUID, quantity: int, conn=None) -> bool:
        """Give refunded quantity back to the denormalized counter"""
        async with self.db.connection(conn) as conn:
            result = await conn.execute("""
                UPDATE products
                SET stock = stock + $2
                WHERE id = $1
            """, product_id, quantity)
            return result == "UPDATE 1"

    async def product_exists(self, product_id: UUID, conn=None) -> bool:
        async with self.db.connection(conn) as conn:
            return bool(await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM products WHERE id = $1)", product_id
            ))
