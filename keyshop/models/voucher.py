# keyshop/models/voucher.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID
from .base import TimeStampedModel

class Voucher(TimeStampedModel):
    """Discount code with usage limit and validity window"""
    id: UUID
    code: str
    description: Optional[str] = None
    discount_percent: Optional[int] = None
    discount_amount: Optional[Decimal] = None
    max_uses: Optional[int] = None
    used_count: int = 0
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: bool = True
