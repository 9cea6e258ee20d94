# keyshop/models/schemas.py
"""Request payloads accepted by the HTTP handlers"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator
from .order import PaymentMethod

class CheckoutRequest(BaseModel):
    payment_method: PaymentMethod = Field(PaymentMethod.SEPAY, alias="paymentMethod")
    use_wallet: bool = Field(False, alias="useWallet")
    voucher_code: Optional[str] = Field(None, alias="voucherCode")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("voucher_code")
    @classmethod
    def normalize_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().upper()
        return value or None

class CartItemRequest(BaseModel):
    product_id: UUID = Field(alias="productId")
    quantity: int = Field(1, gt=0)

    model_config = ConfigDict(populate_by_name=True)

class CartQuantityRequest(BaseModel):
    quantity: int = Field(gt=0)

class DepositCreateRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: str = Field("sepay", alias="paymentMethod")

    model_config = ConfigDict(populate_by_name=True)

class WalletAdjustRequest(BaseModel):
    # Signed: positive credits the wallet, negative withdraws
    amount: Decimal
    description: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def non_zero(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("amount must not be zero")
        return value

class RefundRequest(BaseModel):
    reason: str = "No reason given"

class InventoryCreateRequest(BaseModel):
    product_id: UUID = Field(alias="productId")
    secret_data: str = Field(alias="secretData")
    notes: Optional[str] = None
    account_expires_at: Optional[datetime] = Field(None, alias="accountExpiresAt")
    cost_price: Decimal = Field(Decimal(0), alias="costPrice", ge=0)
    source: str = "admin_manual"
    batch_id: Optional[str] = Field(None, alias="batchId")

    model_config = ConfigDict(populate_by_name=True)

class InventoryBulkItem(BaseModel):
    secret_data: str = Field(alias="secretData")
    notes: Optional[str] = None
    account_expires_at: Optional[datetime] = Field(None, alias="accountExpiresAt")
    cost_price: Decimal = Field(Decimal(0), alias="costPrice", ge=0)
    source: str = "bulk_import"

    model_config = ConfigDict(populate_by_name=True)

class InventoryBulkRequest(BaseModel):
    product_id: UUID = Field(alias="productId")
    items: Optional[List[Union[str, InventoryBulkItem]]] = None
    items_text: Optional[str] = Field(None, alias="itemsText")

    model_config = ConfigDict(populate_by_name=True)

class VoucherCreateRequest(BaseModel):
    code: str
    description: Optional[str] = None
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()

class VoucherUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are written"""
    description: Optional[str] = None
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("is_active")
    @classmethod
    def reject_null_flag(cls, value: Optional[bool]) -> bool:
        if value is None:
            raise ValueError("is_active cannot be null")
        return value

class VoucherPreviewRequest(BaseModel):
    code: str
    amount: Decimal = Field(ge=0)

class AdminRoleUpdateRequest(BaseModel):
    admin_role_id: Optional[int] = Field(None, alias="adminRoleId")

    model_config = ConfigDict(populate_by_name=True)

class SepayWebhookPayload(BaseModel):
    """Bank transfer notification; only the fields reconciliation needs"""
    content: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    transfer_amount: Optional[Decimal] = Field(None, alias="transferAmount")
    amount: Optional[Decimal] = None
    reference_code: Optional[str] = Field(None, alias="referenceCode")
    transaction_id: Optional[str] = Field(None, alias="id")
    status: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    @property
    def raw_content(self) -> str:
        return self.content or self.code or self.description or ""

    @property
    def received_amount(self) -> Decimal:
        if self.transfer_amount is not None:
            return self.transfer_amount
        return self.amount if self.amount is not None else Decimal(0)

    @property
    def provider_tx_id(self) -> Optional[str]:
        return self.reference_code or self.transaction_id
