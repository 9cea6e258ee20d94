# keyshop/handlers/__init__.py
"""HTTP handlers"""
from .base_handler import BaseHandler, require_permission
from .user_handlers import UserHandler
from .wallet_handler import WalletHandler
from .admin_handlers import AdminHandler
from .voucher_handlers import VoucherHandler
from .payment_verification_handler import PaymentVerificationHandler

__all__ = [
    'BaseHandler',
    'require_permission',
    'UserHandler',
    'WalletHandler',
    'AdminHandler',
    'VoucherHandler',
    'PaymentVerificationHandler',
]
