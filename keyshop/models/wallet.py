# keyshop/models/wallet.py
from datetime import datetime
from decimal import Decimal
from typing import Optional
from enum import Enum
from uuid import UUID
from .base import TimeStampedModel

class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    PURCHASE = "purchase"
    REFUND = "refund"
    WITHDRAW = "withdraw"

    @property
    def is_debit(self) -> bool:
        return self in (TransactionType.PURCHASE, TransactionType.WITHDRAW)

class DepositStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"

class WalletTransaction(TimeStampedModel):
    """Immutable audit row written with every balance change"""
    id: UUID
    wallet_id: UUID
    user_id: UUID
    type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    description: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    status: str = "success"
    provider: Optional[str] = None

class Wallet(TimeStampedModel):
    """Wallet model for user balance"""
    id: UUID
    user_id: UUID
    balance: Decimal = Decimal(0)
    total_deposited: Decimal = Decimal(0)
    total_spent: Decimal = Decimal(0)

class DepositRequest(TimeStampedModel):
    id: UUID
    user_id: UUID
    wallet_id: UUID
    amount: Decimal
    payment_method: Optional[str] = None
    payment_code: str
    provider: Optional[str] = None
    status: DepositStatus = DepositStatus.PENDING
    provider_tx_id: Optional[str] = None
    expires_at: datetime
    completed_at: Optional[datetime] = None
