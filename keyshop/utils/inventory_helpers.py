# keyshop/utils/inventory_helpers.py
import re
import secrets
import string
from datetime import datetime, timezone
from typing import List, Optional

from ..exceptions import ValidationError

SECRET_MIN_LENGTH = 10
SECRET_MAX_LENGTH = 10000

SEPARATOR_LINE = re.compile(r"^---[ \t]*$", re.MULTILINE)

def generate_batch_id(now: Optional[datetime] = None) -> str:
    """BATCH-YYYYMMDD-<last 6 ms digits>-<4 random chars>"""
    now = now or datetime.now(timezone.utc)
    millis = str(int(now.timestamp() * 1000))[-6:]
    tail = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"BATCH-{now:%Y%m%d}-{millis}-{tail}"

def parse_bulk_inventory_text(text: str) -> List[str]:
    """Split a pasted block into secrets.

    Entries are separated by a line holding only ``---``; when no such
    separator is present, blank lines separate entries instead.
    """
    if SEPARATOR_LINE.search(text):
        parts = SEPARATOR_LINE.split(text)
    else:
        parts = re.split(r"\n\s*\n", text)
    return [part.strip() for part in parts if part.strip()]

def validate_secret_data(data: str) -> str:
    if not isinstance(data, str) or not data.strip():
        raise ValidationError("Secret data must be a non-empty string")
    if len(data) < SECRET_MIN_LENGTH:
        raise ValidationError(f"Secret data too short (minimum {SECRET_MIN_LENGTH} characters)")
    if len(data) > SECRET_MAX_LENGTH:
        raise ValidationError(f"Secret data too long (maximum {SECRET_MAX_LENGTH} characters)")
    return data

def days_until(expires_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    if expires_at is None:
        return None
    now = now or datetime.now(timezone.utc)
    seconds = (expires_at - now).total_seconds()
    return int(-(-seconds // 86400))
