# keyshop/models/order.py
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from .base import RecordModel

class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"

# Allowed forward transitions; anything else is rejected
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID},
    OrderStatus.PAID: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),
}

def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[OrderStatus(current)]

class PaymentMethod(str, Enum):
    SEPAY = "sepay"
    WALLET = "wallet"

class OrderItem(RecordModel):
    """Line item with name/price snapshot taken at checkout"""
    id: Optional[UUID] = None
    product_id: UUID
    name: str
    price: Decimal
    quantity: int

    @property
    def total_price(self) -> Decimal:
        return self.price * self.quantity
