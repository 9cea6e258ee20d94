# keyshop/models/inventory.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID
from .base import RecordModel

class InventoryItem(RecordModel):
    """One sellable secret belonging to a product"""
    id: UUID
    product_id: UUID
    secret_data: str
    batch_id: Optional[str] = None
    notes: Optional[str] = None
    cost_price: Decimal = Decimal(0)
    source: str = "manual"
    is_sold: bool = False
    sold_at: Optional[datetime] = None
    order_item_id: Optional[UUID] = None
    account_expires_at: Optional[datetime] = None
    created_at: datetime
