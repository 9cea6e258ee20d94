# keyshop/exceptions.py
from decimal import Decimal
from typing import Any, Dict, Optional


class ShopError(Exception):
    """Base error carrying a stable machine code, an HTTP status and a message"""
    code = "unknown_error"
    status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"success": False, "error": self.code, "message": self.message}
        if self.details:
            payload["details"] = {
                key: str(value) if isinstance(value, Decimal) else value
                for key, value in self.details.items()
            }
        return payload


class ValidationError(ShopError):
    code = "validation_error"
    status = 400


class NotFound(ShopError):
    code = "not_found"
    status = 404


class Conflict(ShopError):
    code = "conflict"
    status = 409


class EmptyCart(ShopError):
    code = "empty_cart"
    status = 400

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class InsufficientInventory(ShopError):
    """Raised when a line item cannot be fully allocated"""
    code = "insufficient_inventory"
    status = 400

    def __init__(self, product_id: Any, requested: int, available: int):
        super().__init__(
            f"Insufficient inventory for product {product_id}. "
            f"Need {requested}, have {available}",
            product_id=str(product_id),
            requested=requested,
            available=available,
            shortfall=requested - available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InsufficientBalance(ShopError):
    code = "insufficient_balance"
    status = 400

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient wallet balance. Required: {required}, Available: {available}",
            required=required,
            available=available,
        )
        self.required = required
        self.available = available


class InvalidState(ShopError):
    code = "invalid_state"
    status = 400


class AmountMismatch(ShopError):
    """Raised when a transfer is smaller than the expected amount"""
    code = "amount_mismatch"
    status = 400

    def __init__(self, expected: Decimal, received: Decimal):
        super().__init__(
            f"Amount mismatch. Expected: {expected}, Received: {received}",
            expected=expected,
            received=received,
        )
        self.expected = expected
        self.received = received


class VoucherError(ShopError):
    code = "voucher_error"
    status = 400


class Unauthorized(ShopError):
    code = "unauthorized"
    status = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(ShopError):
    code = "forbidden"
    status = 403

    def __init__(self, message: str = "Forbidden", required_permission: Optional[str] = None):
        if required_permission:
            super().__init__(message, required_permission=required_permission)
        else:
            super().__init__(message)


class UpstreamError(ShopError):
    code = "upstream_error"
    status = 502
