from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from keyshop.exceptions import AmountMismatch, InsufficientBalance, ValidationError
from keyshop.models.schemas import SepayWebhookPayload
from keyshop.models.wallet import TransactionType
from keyshop.services.wallet_service import WalletService, signed_amount


def install_wallet_store(conn, user_id, balance=Decimal(0)):
    """Wallet, ledger and deposit tables kept in conn.state"""
    wallet_id = uuid4()
    conn.state["wallets"] = {
        wallet_id: {
            "id": wallet_id,
            "user_id": user_id,
            "balance": balance,
            "total_deposited": Decimal(0),
            "total_spent": Decimal(0),
        }
    }
    conn.state["ledger"] = []
    conn.state["deposits"] = {}

    def wallet_by_user(uid):
        for wallet in conn.state["wallets"].values():
            if wallet["user_id"] == uid:
                return dict(wallet)
        return None

    def lock_wallet(wid):
        wallet = conn.state["wallets"].get(wid)
        return dict(wallet) if wallet else None

    def update_wallet(wid, balance, deposited, spent):
        wallet = conn.state["wallets"][wid]
        wallet["balance"] = balance
        wallet["total_deposited"] += deposited
        wallet["total_spent"] += spent
        return "UPDATE 1"

    def insert_ledger(wid, uid, tx_type, amount, before, after, description, ref_type, ref_id, provider):
        row_id = uuid4()
        conn.state["ledger"].append({
            "id": row_id, "wallet_id": wid, "type": tx_type, "amount": amount,
            "balance_before": before, "balance_after": after,
            "reference_type": ref_type, "reference_id": ref_id, "provider": provider,
        })
        return row_id

    def deposit_by_code(code):
        for deposit in conn.state["deposits"].values():
            if deposit["payment_code"] == code:
                return dict(deposit)
        return None

    def deposit_by_id(deposit_id):
        deposit = conn.state["deposits"].get(deposit_id)
        return dict(deposit) if deposit else None

    def complete_deposit(deposit_id, provider_tx_id):
        deposit = conn.state["deposits"][deposit_id]
        deposit["status"] = "completed"
        deposit["provider_tx_id"] = provider_tx_id
        return "UPDATE 1"

    conn.on("INSERT INTO wallets (user_id)", "INSERT 0 0")
    conn.on("SELECT * FROM wallets WHERE user_id = $1", wallet_by_user)
    conn.on("FROM wallets WHERE id = $1 FOR UPDATE", lock_wallet)
    conn.on("UPDATE wallets SET balance = $2", update_wallet)
    conn.on("INSERT INTO wallet_transactions", insert_ledger)
    conn.on("SELECT balance FROM wallets WHERE id = $1", lambda wid: conn.state["wallets"][wid]["balance"])
    conn.on("FROM deposit_requests WHERE payment_code = $1 FOR UPDATE", deposit_by_code)
    conn.on("FROM deposit_requests WHERE id = $1 FOR UPDATE", deposit_by_id)
    conn.on("UPDATE deposit_requests SET status = 'completed'", complete_deposit)
    return wallet_id


def add_deposit(conn, wallet_id, user_id, amount, code="DEP12345678ABCD", status="pending"):
    deposit_id = uuid4()
    conn.state["deposits"][deposit_id] = {
        "id": deposit_id,
        "user_id": user_id,
        "wallet_id": wallet_id,
        "amount": amount,
        "payment_code": code,
        "provider": "sepay",
        "status": status,
        "expires_at": datetime.now(timezone.utc) + timedelta(minutes=30),
    }
    return deposit_id


def test_signed_amount():
    assert signed_amount(TransactionType.DEPOSIT, Decimal(10)) == Decimal(10)
    assert signed_amount(TransactionType.REFUND, Decimal(10)) == Decimal(10)
    assert signed_amount(TransactionType.PURCHASE, Decimal(10)) == Decimal(-10)
    assert signed_amount("withdraw", Decimal(10)) == Decimal(-10)


async def test_ledger_conserves_balance(db, conn):
    user_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id, balance=Decimal("1000"))
    service = WalletService(db)

    steps = [
        (Decimal("100000"), TransactionType.DEPOSIT),
        (Decimal("30000"), TransactionType.PURCHASE),
        (Decimal("10000"), TransactionType.REFUND),
        (Decimal("5000"), TransactionType.WITHDRAW),
        (Decimal("76000"), TransactionType.PURCHASE),
    ]
    for amount, tx_type in steps:
        await service.post_transaction(wallet_id, amount, tx_type)

    ledger = conn.state["ledger"]
    wallet = conn.state["wallets"][wallet_id]

    assert len(ledger) == len(steps)
    for row in ledger:
        assert row["amount"] > 0
        assert row["balance_after"] == row["balance_before"] + signed_amount(row["type"], row["amount"])
        assert row["balance_after"] >= 0
    for previous, current in zip(ledger, ledger[1:]):
        assert current["balance_before"] == previous["balance_after"]

    expected = ledger[0]["balance_before"] + sum(signed_amount(r["type"], r["amount"]) for r in ledger)
    assert wallet["balance"] == expected == Decimal("0")
    assert wallet["total_deposited"] == Decimal("100000")
    assert wallet["total_spent"] == Decimal("106000")


async def test_insufficient_balance_leaves_no_trace(db, conn):
    user_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id, balance=Decimal("100000"))
    service = WalletService(db)

    with pytest.raises(InsufficientBalance) as exc_info:
        await service.pay_with_wallet(user_id, uuid4(), Decimal("150000"))

    assert exc_info.value.required == Decimal("150000")
    assert exc_info.value.available == Decimal("100000")
    assert conn.state["wallets"][wallet_id]["balance"] == Decimal("100000")
    assert conn.state["ledger"] == []
    assert conn.rollbacks >= 1


@pytest.mark.parametrize("amount", [Decimal(0), Decimal("-5")])
async def test_non_positive_amount_rejected(db, conn, amount):
    with pytest.raises(ValidationError):
        await WalletService(db).post_transaction(uuid4(), amount, TransactionType.DEPOSIT)
    assert conn.statements == []


async def test_admin_adjust_negative_is_withdraw(db, conn):
    user_id = uuid4()
    admin_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id, balance=Decimal("50000"))

    result = await WalletService(db).admin_adjust_wallet(user_id, Decimal("-20000"), "Chargeback", admin_id)

    assert result["type"] == "withdraw"
    assert result["new_balance"] == Decimal("30000")
    row = conn.state["ledger"][0]
    assert row["amount"] == Decimal("20000")
    assert row["reference_type"] == "admin_adjustment"
    assert row["reference_id"] == str(admin_id)
    assert conn.state["wallets"][wallet_id]["total_spent"] == Decimal(0)


async def test_admin_adjust_positive_is_deposit(db, conn):
    user_id = uuid4()
    install_wallet_store(conn, user_id)

    result = await WalletService(db).admin_adjust_wallet(user_id, Decimal("15000"), None, uuid4())

    assert result["type"] == "deposit"
    assert result["new_balance"] == Decimal("15000")


async def test_deposit_webhook_is_idempotent(db, conn):
    user_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id)
    deposit_id = add_deposit(conn, wallet_id, user_id, Decimal("50000"))
    service = WalletService(db)
    payload = SepayWebhookPayload.model_validate({
        "content": "NAP DEP12345678ABCD",
        "transferAmount": 50000,
        "referenceCode": "FT2401",
    })

    first = await service.handle_deposit_webhook(payload)
    second = await service.handle_deposit_webhook(payload)

    assert first["message"] == "Deposit completed"
    assert first["new_balance"] == Decimal("50000")
    assert second["success"] is True
    assert second["message"] == "Deposit already processed"
    assert conn.state["wallets"][wallet_id]["balance"] == Decimal("50000")
    assert len(conn.state["ledger"]) == 1
    assert conn.state["deposits"][deposit_id]["status"] == "completed"
    assert conn.state["deposits"][deposit_id]["provider_tx_id"] == "FT2401"


async def test_underpaid_deposit_is_rejected(db, conn):
    user_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id)
    deposit_id = add_deposit(conn, wallet_id, user_id, Decimal("50000"))
    payload = SepayWebhookPayload(content="DEP12345678ABCD", transferAmount=Decimal("49999"))

    with pytest.raises(AmountMismatch):
        await WalletService(db).handle_deposit_webhook(payload)

    assert conn.state["deposits"][deposit_id]["status"] == "pending"
    assert conn.state["ledger"] == []


async def test_overpaid_deposit_credits_requested_amount(db, conn):
    user_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id)
    add_deposit(conn, wallet_id, user_id, Decimal("50000"))
    payload = SepayWebhookPayload(content="DEP12345678ABCD", transferAmount=Decimal("60000"))

    await WalletService(db).handle_deposit_webhook(payload)

    assert conn.state["wallets"][wallet_id]["balance"] == Decimal("50000")


async def test_expired_deposit_is_acknowledged_without_credit(db, conn):
    user_id = uuid4()
    wallet_id = install_wallet_store(conn, user_id)
    add_deposit(conn, wallet_id, user_id, Decimal("50000"), status="expired")
    payload = SepayWebhookPayload(content="DEP12345678ABCD", transferAmount=Decimal("50000"))

    result = await WalletService(db).handle_deposit_webhook(payload)

    assert result["status"] == "expired"
    assert conn.state["ledger"] == []


async def test_deposit_webhook_without_code(db, conn):
    payload = SepayWebhookPayload(content="hello", transferAmount=Decimal("50000"))
    with pytest.raises(ValidationError):
        await WalletService(db).handle_deposit_webhook(payload)


@pytest.mark.parametrize("amount", [Decimal("9999"), Decimal("50000001")])
async def test_deposit_request_bounds(db, conn, amount):
    with pytest.raises(ValidationError):
        await WalletService(db).create_deposit_request(uuid4(), amount)
    assert conn.statements == []
