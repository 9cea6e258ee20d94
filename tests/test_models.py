from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError as PydanticValidationError

from keyshop.models.order import OrderItem, OrderStatus, can_transition
from keyshop.models.schemas import CheckoutRequest, VoucherUpdateRequest, WalletAdjustRequest
from keyshop.models.wallet import TransactionType


def test_order_status_only_moves_forward():
    assert can_transition("pending", OrderStatus.PAID)
    assert can_transition(OrderStatus.PAID, OrderStatus.REFUNDED)
    assert not can_transition(OrderStatus.PAID, OrderStatus.PENDING)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.REFUNDED)
    assert not can_transition(OrderStatus.REFUNDED, OrderStatus.PAID)


def test_order_item_total():
    item = OrderItem(product_id=uuid4(), name="Canva Pro", price=Decimal("45000.50"), quantity=2)
    assert item.total_price == Decimal("90001.00")


def test_debit_types():
    assert TransactionType.PURCHASE.is_debit
    assert TransactionType.WITHDRAW.is_debit
    assert not TransactionType.DEPOSIT.is_debit
    assert not TransactionType.REFUND.is_debit


def test_checkout_request_defaults_and_aliases():
    request = CheckoutRequest.model_validate({"useWallet": True, "voucherCode": "   "})
    assert request.use_wallet is True
    assert request.payment_method.value == "sepay"
    assert request.voucher_code is None


def test_wallet_adjustment_must_not_be_zero():
    with pytest.raises(PydanticValidationError):
        WalletAdjustRequest(amount=Decimal(0))


def test_voucher_update_rejects_unknown_fields():
    with pytest.raises(PydanticValidationError):
        VoucherUpdateRequest.model_validate({"used_count": 0})
    assert VoucherUpdateRequest(max_uses=10).model_dump(exclude_unset=True) == {"max_uses": 10}


def test_voucher_update_rejects_null_active_flag():
    with pytest.raises(PydanticValidationError):
        VoucherUpdateRequest.model_validate({"is_active": None})
    assert VoucherUpdateRequest.model_validate({"description": None}).model_dump(exclude_unset=True) == {
        "description": None
    }
