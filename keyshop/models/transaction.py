# keyshop/models/transaction.py
from enum import Enum

class PaymentStatus(str, Enum):
    """Provider transaction for an order; success and failed are terminal"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
