import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from keyshop.utils import formatters
from keyshop.utils.formatters import format_datetime, format_price, json_dumps


def test_format_price():
    assert format_price(Decimal("1234567")) == "1,234,567"
    assert format_price(Decimal("0")) == "0"


def test_format_datetime_uses_shop_timezone(monkeypatch):
    monkeypatch.setattr(formatters.Config, "TIMEZONE", "Asia/Ho_Chi_Minh")
    assert format_datetime(datetime(2024, 1, 1, 17, 30, tzinfo=timezone.utc)) == "2024-01-02 00:30:00"
    assert format_datetime(datetime(2024, 1, 1, 17, 30)) == "2024-01-02 00:30:00"


def test_json_dumps_keeps_money_exact():
    order_id = UUID("0a1b2c3d-4e5f-6789-abcd-ef0123456789")
    payload = json.loads(json_dumps({"order_id": order_id, "total": Decimal("180000.50")}))
    assert payload == {"order_id": str(order_id), "total": "180000.50"}
