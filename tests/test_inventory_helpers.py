import re
from datetime import datetime, timedelta, timezone

import pytest

from keyshop.exceptions import ValidationError
from keyshop.utils.inventory_helpers import (
    days_until,
    generate_batch_id,
    parse_bulk_inventory_text,
    validate_secret_data,
)


def test_batch_id_format():
    now = datetime(2024, 3, 9, 12, 0, tzinfo=timezone.utc)
    batch_id = generate_batch_id(now)
    assert re.fullmatch(r"BATCH-20240309-\d{6}-[A-Z0-9]{4}", batch_id)


def test_parse_bulk_text_with_dash_separator():
    text = "user1@mail.com:pass1\nrecovery: a\n---\nuser2@mail.com:pass2\n---\nuser3@mail.com:pass3"
    items = parse_bulk_inventory_text(text)
    assert items == [
        "user1@mail.com:pass1\nrecovery: a",
        "user2@mail.com:pass2",
        "user3@mail.com:pass3",
    ]


def test_parse_bulk_text_falls_back_to_blank_lines():
    text = "KEY-AAAA-BBBB-CCCC\n\nKEY-DDDD-EEEE-FFFF\n\n\nKEY-GGGG-HHHH-IIII\n"
    assert parse_bulk_inventory_text(text) == [
        "KEY-AAAA-BBBB-CCCC",
        "KEY-DDDD-EEEE-FFFF",
        "KEY-GGGG-HHHH-IIII",
    ]


def test_parse_bulk_text_drops_empty_entries():
    assert parse_bulk_inventory_text("\n---\n   \n---\nonly-one-secret-here") == ["only-one-secret-here"]


@pytest.mark.parametrize("data", ["", "   ", "short", "x" * 10001])
def test_validate_secret_rejects(data):
    with pytest.raises(ValidationError):
        validate_secret_data(data)


def test_validate_secret_accepts_bounds():
    assert validate_secret_data("x" * 10) == "x" * 10
    assert validate_secret_data("x" * 10000) == "x" * 10000


def test_days_until_rounds_up():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert days_until(now + timedelta(days=2, hours=1), now) == 3
    assert days_until(now + timedelta(days=2), now) == 2
    assert days_until(None, now) is None
