from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from keyshop.exceptions import NotFound
from keyshop.services.delivery_service import DeliveryService
from keyshop.services.fulfillment_service import FulfillmentService
from keyshop.services.inventory_service import InventoryService
from keyshop.services.stock_sync_service import StockSyncService
from keyshop.services.wallet_service import WalletService

NOW = datetime.now(timezone.utc)


def is_live(item):
    expires = item["account_expires_at"]
    return not item["is_sold"] and (expires is None or expires > NOW)


def install_stock_store(conn, products, inventory):
    """products and inventory_items kept in conn.state"""
    conn.state["products"] = products
    conn.state["inventory"] = inventory

    def sync(*args):
        targets = [p for p in conn.state["products"] if not args or p["id"] == args[0]]
        for product in targets:
            product["stock"] = sum(
                1 for item in conn.state["inventory"]
                if item["product_id"] == product["id"] and is_live(item)
            )
        rows = [{"id": p["id"], "name": p["name"], "stock": p["stock"]} for p in targets]
        if args:
            return rows[0] if rows else None
        return rows

    conn.on("UPDATE products p SET stock", sync)


def secret(product_id, sold=False, expires_in=None):
    return {
        "id": uuid4(),
        "product_id": product_id,
        "is_sold": sold,
        "account_expires_at": NOW + expires_in if expires_in is not None else None,
    }


async def test_sync_counts_only_unsold_and_unexpired(db, conn):
    product = {"id": uuid4(), "name": "Spotify Family", "stock": 99}
    install_stock_store(conn, [product], [
        secret(product["id"]),
        secret(product["id"], expires_in=timedelta(days=3)),
        secret(product["id"], sold=True),
        secret(product["id"], expires_in=-timedelta(minutes=1)),
    ])

    row = await StockSyncService(db).sync_product(product["id"])

    assert row["stock"] == 2
    _, sql, args = conn.statements[0]
    assert "i.is_sold = FALSE" in sql
    assert "(i.account_expires_at IS NULL OR i.account_expires_at > NOW())" in sql
    assert args == (product["id"],)


async def test_sync_all_is_idempotent(db, conn):
    first = {"id": uuid4(), "name": "Canva Pro", "stock": 0}
    second = {"id": uuid4(), "name": "Office 365", "stock": 7}
    install_stock_store(conn, [first, second], [secret(first["id"]), secret(first["id"])])
    service = StockSyncService(db)

    once = await service.sync_all()
    twice = await service.sync_all()

    assert once == twice
    assert {row["name"]: row["stock"] for row in once} == {"Canva Pro": 2, "Office 365": 0}


async def test_sync_unknown_product(db, conn):
    install_stock_store(conn, [], [])
    with pytest.raises(NotFound):
        await StockSyncService(db).sync_product(uuid4())


def install_delivery_store(conn, deliveries):
    conn.state["deliveries"] = deliveries

    def for_user(user_id):
        return [
            dict(d) for d in conn.state["deliveries"]
            if d["user_id"] == user_id and d["expires_at"] > NOW
        ]

    def delete_expired():
        expired = [d for d in conn.state["deliveries"] if d["expires_at"] < NOW]
        conn.state["deliveries"] = [d for d in conn.state["deliveries"] if d["expires_at"] >= NOW]
        return [{"id": d["id"]} for d in expired]

    def for_order(order_id):
        return [dict(d) for d in conn.state["deliveries"] if d["order_id"] == order_id]

    conn.on("WHERE o.user_id = $1", for_user)
    conn.on("DELETE FROM order_item_deliveries", delete_expired)
    conn.on("WHERE oi.order_id = $1", for_order)


def delivery(user_id, order_id=None, expires_in=timedelta(days=30)):
    return {
        "id": uuid4(),
        "user_id": user_id,
        "order_id": order_id or uuid4(),
        "data": "user@mail.com:hunter22",
        "expires_at": NOW + expires_in,
    }


async def test_resources_hide_expired_deliveries(db, conn):
    user_id = uuid4()
    fresh = delivery(user_id)
    install_delivery_store(conn, [
        fresh,
        delivery(user_id, expires_in=-timedelta(hours=1)),
        delivery(uuid4()),
    ])

    rows = await DeliveryService(db).get_user_deliveries(user_id)

    assert [row["id"] for row in rows] == [fresh["id"]]
    _, sql, _ = conn.statements[0]
    assert "d.expires_at > NOW()" in sql


async def test_cleanup_removes_only_expired(db, conn):
    user_id = uuid4()
    install_delivery_store(conn, [
        delivery(user_id, expires_in=-timedelta(days=1)),
        delivery(user_id, expires_in=-timedelta(seconds=5)),
        delivery(user_id),
    ])
    service = DeliveryService(db)

    assert await service.cleanup_expired_deliveries() == 2
    assert await service.cleanup_expired_deliveries() == 0
    assert len(conn.state["deliveries"]) == 1
    assert "WHERE expires_at < NOW()" in conn.statements[0][1]


async def test_order_deliveries_include_expired_copies(db, conn):
    order_id = uuid4()
    user_id = uuid4()
    install_delivery_store(conn, [
        delivery(user_id, order_id),
        delivery(user_id, order_id, expires_in=-timedelta(days=2)),
        delivery(user_id),
    ])

    rows = await DeliveryService(db).get_order_deliveries(order_id)

    assert len(rows) == 2


async def test_expired_deposits_leave_pending_state(db, conn):
    conn.state["deposits"] = [
        {"id": uuid4(), "status": "pending", "expires_at": NOW - timedelta(minutes=31)},
        {"id": uuid4(), "status": "pending", "expires_at": NOW + timedelta(minutes=10)},
        {"id": uuid4(), "status": "completed", "expires_at": NOW - timedelta(hours=2)},
    ]

    def expire():
        rows = []
        for deposit in conn.state["deposits"]:
            if deposit["status"] == "pending" and deposit["expires_at"] < NOW:
                deposit["status"] = "expired"
                rows.append({"id": deposit["id"]})
        return rows

    conn.on("UPDATE deposit_requests SET status = 'expired'", expire)
    service = WalletService(db)

    assert await service.expire_deposit_requests() == 1
    assert await service.expire_deposit_requests() == 0
    assert [d["status"] for d in conn.state["deposits"]] == ["expired", "pending", "completed"]
    assert "WHERE status = 'pending' AND expires_at < NOW()" in conn.statements[0][1]


async def test_fulfillment_status_reports_stock_for_short_lines(db, conn):
    order_id = uuid4()
    short_product, done_product = uuid4(), uuid4()
    conn.on("LEFT JOIN inventory_items i", [
        {"id": uuid4(), "product_id": short_product, "name": "Netflix", "quantity": 3, "allocated": 1},
        {"id": uuid4(), "product_id": done_product, "name": "YouTube", "quantity": 1, "allocated": 1},
    ])
    conn.on("SELECT COUNT(*) FROM inventory_items WHERE product_id = $1", lambda product_id: 4)
    service = FulfillmentService(db, InventoryService(db, AsyncMock(), AsyncMock()))

    status = await service.get_fulfillment_status(order_id)

    short, done = status["items"]
    assert status["complete"] is False
    assert short["available"] == 4
    assert "available" not in done
    assert conn.executed("SELECT COUNT(*) FROM inventory_items WHERE product_id = $1") == [(short_product,)]
