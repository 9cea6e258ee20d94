# keyshop/models/product.py
from decimal import Decimal
from uuid import UUID
from .base import TimeStampedModel

class Product(TimeStampedModel):
    """Product model for digital goods"""
    id: UUID
    name: str
    slug: str
    price: Decimal
    # Denormalized count of available inventory, recomputed by stock sync
    stock: int = 0
    is_active: bool = True
