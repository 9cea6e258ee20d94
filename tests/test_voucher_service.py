from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from keyshop.exceptions import NotFound, ValidationError, VoucherError
from keyshop.models.schemas import VoucherCreateRequest
from keyshop.services.voucher_service import VoucherService, check_voucher_usable, compute_discount


def make_voucher(**overrides):
    voucher = {
        "id": uuid4(),
        "code": "SAVE10",
        "description": "Ten percent off",
        "discount_percent": 10,
        "discount_amount": None,
        "max_uses": 5,
        "used_count": 0,
        "valid_from": None,
        "valid_to": None,
        "is_active": True,
        "created_at": datetime.now(timezone.utc),
    }
    voucher.update(overrides)
    return voucher


def test_percent_discount():
    assert compute_discount(Decimal("200000"), discount_percent=10) == Decimal("20000")


def test_percent_then_flat_amount():
    discount = compute_discount(Decimal("200000"), discount_percent=10, discount_amount=Decimal("30000"))
    assert discount == Decimal("50000")


def test_flat_amount_never_exceeds_remaining():
    assert compute_discount(Decimal("15000"), discount_amount=Decimal("20000")) == Decimal("15000")
    assert compute_discount(Decimal("100"), discount_percent=100, discount_amount=Decimal("5")) == Decimal("100")


def test_percent_discount_rounds_to_cents():
    assert compute_discount(Decimal("99.99"), discount_percent=15) == Decimal("15.00")


def test_no_discount_configured():
    assert compute_discount(Decimal("50000")) == Decimal(0)


def test_usable_checks():
    now = datetime.now(timezone.utc)
    check_voucher_usable(make_voucher(), now)

    with pytest.raises(VoucherError):
        check_voucher_usable(make_voucher(is_active=False), now)
    with pytest.raises(VoucherError):
        check_voucher_usable(make_voucher(valid_from=now + timedelta(days=1)), now)
    with pytest.raises(VoucherError):
        check_voucher_usable(make_voucher(valid_to=now - timedelta(seconds=1)), now)
    with pytest.raises(VoucherError):
        check_voucher_usable(make_voucher(max_uses=3, used_count=3), now)


def voucher_store(conn, voucher):
    conn.state["voucher"] = voucher

    def select(code):
        stored = conn.state["voucher"]
        return dict(stored) if stored["code"] == code else None

    def increment(voucher_id):
        conn.state["voucher"]["used_count"] += 1
        return "UPDATE 1"

    conn.on("FROM vouchers WHERE code = $1 FOR UPDATE", select)
    conn.on("SET used_count = used_count + 1", increment)


async def test_redeem_consumes_one_use(db, conn):
    voucher_store(conn, make_voucher())
    service = VoucherService(db)

    voucher, discount = await service.redeem("save10", Decimal("200000"))

    assert voucher["code"] == "SAVE10"
    assert discount == Decimal("20000")
    assert conn.state["voucher"]["used_count"] == 1


async def test_redeem_at_limit_is_rejected(db, conn):
    voucher_store(conn, make_voucher(max_uses=2, used_count=2))
    service = VoucherService(db)

    with pytest.raises(VoucherError):
        await service.redeem("SAVE10", Decimal("200000"))

    assert conn.state["voucher"]["used_count"] == 2
    assert not conn.executed("SET used_count = used_count + 1")


async def test_redeem_unknown_code(db, conn):
    voucher_store(conn, make_voucher())
    with pytest.raises(VoucherError):
        await VoucherService(db).redeem("NOPE", Decimal("1000"))


async def test_release_is_floored_at_zero(db, conn):
    order_id = uuid4()
    conn.on("UPDATE vouchers v SET used_count = GREATEST(0, v.used_count - 1)", [{"code": "SAVE10"}])

    codes = await VoucherService(db).release_for_order(order_id)

    assert codes == ["SAVE10"]
    assert conn.executed("GREATEST(0, v.used_count - 1)") == [(order_id,)]


async def test_update_rejects_unknown_fields(db, conn):
    with pytest.raises(ValidationError):
        await VoucherService(db).update_voucher(uuid4(), {"used_count": 0})
    assert conn.statements == []


async def test_update_builds_statement_from_allow_list(db, conn):
    voucher_id = uuid4()
    conn.on("FROM vouchers WHERE id = $1 FOR UPDATE", make_voucher(id=voucher_id))
    conn.on("UPDATE vouchers SET", lambda *args: make_voucher(id=args[-1], max_uses=args[1]))

    voucher = await VoucherService(db).update_voucher(
        voucher_id, {"max_uses": 50, "description": "Spring sale"}
    )

    _, sql, args = conn.statements[1]
    assert "description = $1, max_uses = $2, updated_at = NOW()" in sql
    assert args == ("Spring sale", 50, voucher_id)
    assert voucher.max_uses == 50


async def test_preview_does_not_consume(db, conn):
    conn.on("SELECT * FROM vouchers WHERE code = $1", make_voucher(discount_percent=None,
                                                                   discount_amount=Decimal("5000")))

    preview = await VoucherService(db).preview("save10", Decimal("20000"))

    assert preview["discount"] == Decimal("5000")
    assert preview["total"] == Decimal("15000")
    assert not conn.executed("UPDATE")


@pytest.mark.parametrize("changes", [
    {"is_active": None},
    {"discount_percent": None},
    {"max_uses": 2},
    {"valid_from": datetime(2025, 2, 1, tzinfo=timezone.utc)},
])
async def test_update_keeps_voucher_consistent(db, conn, changes):
    voucher_id = uuid4()
    conn.on("FROM vouchers WHERE id = $1 FOR UPDATE", make_voucher(
        id=voucher_id,
        max_uses=10,
        used_count=3,
        valid_to=datetime(2025, 1, 31, tzinfo=timezone.utc),
    ))

    with pytest.raises(ValidationError):
        await VoucherService(db).update_voucher(voucher_id, changes)

    assert not conn.executed("UPDATE vouchers SET")


async def test_update_can_swap_discount_kind(db, conn):
    voucher_id = uuid4()
    conn.on("FROM vouchers WHERE id = $1 FOR UPDATE", make_voucher(id=voucher_id))
    conn.on("UPDATE vouchers SET", lambda *args: make_voucher(
        id=args[-1], discount_percent=args[0], discount_amount=args[1]
    ))

    voucher = await VoucherService(db).update_voucher(
        voucher_id, {"discount_percent": None, "discount_amount": Decimal("15000")}
    )

    assert voucher.discount_percent is None
    assert voucher.discount_amount == Decimal("15000")


async def test_update_unknown_voucher(db, conn):
    conn.on("FROM vouchers WHERE id = $1 FOR UPDATE", None)
    with pytest.raises(NotFound):
        await VoucherService(db).update_voucher(uuid4(), {"description": "Gone"})


async def test_create_rejects_inverted_window(db, conn):
    data = VoucherCreateRequest(
        code="late",
        discount_percent=5,
        valid_from=datetime(2025, 3, 1, tzinfo=timezone.utc),
        valid_to=datetime(2025, 2, 1, tzinfo=timezone.utc),
    )
    with pytest.raises(ValidationError):
        await VoucherService(db).create_voucher(data)
    assert conn.statements == []
