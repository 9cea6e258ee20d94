# keyshop/utils/payment_codes.py
"""Reconciliation codes embedded in bank transfer content.

Wire contract with the payment provider. Transfer content is free text; it is
upper-cased and searched for:

    order payment:   ORD-XXXXXXXXXX   (hyphen optional, X = hex digit)
    wallet deposit:  DEPYYYYYYYYYYYY  (Y = A-Z or 0-9, exactly 12)

Banks frequently drop punctuation, so order codes are normalised back to the
hyphenated form before lookup.
"""
import re
import secrets
import string
import time
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode
from uuid import UUID
from ..config import Config

ORDER_CODE_PREFIX = "ORD"
DEPOSIT_CODE_PREFIX = "DEP"
DEPOSIT_SUFFIX_LENGTH = 12

ORDER_CODE_PATTERN = re.compile(r"ORD-?([0-9A-F]{10})")
DEPOSIT_CODE_PATTERN = re.compile(r"DEP[A-Z0-9]{%d}" % DEPOSIT_SUFFIX_LENGTH)

_ALPHABET = string.ascii_uppercase + string.digits

def order_payment_code(order_id: UUID) -> str:
    return f"{ORDER_CODE_PREFIX}-{order_id.hex[:10].upper()}"

def new_deposit_code() -> str:
    """DEP + last 8 digits of the ms clock + 4 random characters"""
    clock = str(int(time.time() * 1000))[-8:]
    tail = "".join(secrets.choice(_ALPHABET) for _ in range(4))
    return f"{DEPOSIT_CODE_PREFIX}{clock}{tail}"

def extract_order_code(content: Optional[str]) -> Optional[str]:
    match = ORDER_CODE_PATTERN.search(str(content or "").upper())
    if not match:
        return None
    return f"{ORDER_CODE_PREFIX}-{match.group(1)}"

def extract_deposit_code(content: Optional[str]) -> Optional[str]:
    match = DEPOSIT_CODE_PATTERN.search(str(content or "").upper())
    return match.group(0) if match else None

def payment_instructions(amount: Decimal, code: str) -> Dict[str, Any]:
    """Bank transfer details shown to the payer; QR only when a BIN is configured"""
    instructions = {
        "amount": amount,
        "content": code,
        "bank_name": Config.SEPAY_BANK_NAME,
        "account_number": Config.SEPAY_ACCOUNT_NUMBER,
        "account_name": Config.SEPAY_ACCOUNT_NAME,
        "qr_url": None,
    }
    if Config.SEPAY_BANK_BIN and Config.SEPAY_ACCOUNT_NUMBER:
        query = urlencode({
            "addInfo": code,
            "accountName": Config.SEPAY_ACCOUNT_NAME,
            "amount": str(amount.quantize(Decimal(1))),
        })
        instructions["qr_url"] = (
            f"https://img.vietqr.io/image/{Config.SEPAY_BANK_BIN}-"
            f"{Config.SEPAY_ACCOUNT_NUMBER}-print.png?{query}"
        )
    return instructions
