# keyshop/utils/formatters.py
import json
from datetime import datetime
from decimal import Decimal
from typing import Any
import pytz
from pydantic_core import to_jsonable_python
from ..config import Config

def format_price(amount: Decimal) -> str:
    """Format a money amount with thousands separators"""
    return f"{amount:,.0f}"

def format_datetime(dt: datetime) -> str:
    """Render a timestamp in the shop timezone"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(local_tz).strftime("%Y-%m-%d %H:%M:%S")

def json_dumps(data: Any) -> str:
    """JSON encoder for responses; Decimal stays exact as a string"""
    return json.dumps(to_jsonable_python(data))
