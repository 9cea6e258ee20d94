# keyshop/services/wallet_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

import asyncpg

from ..config import Config
from ..exceptions import AmountMismatch, InsufficientBalance, InvalidState, NotFound, ValidationError
from ..models.schemas import SepayWebhookPayload
from ..models.wallet import DepositRequest, DepositStatus, TransactionType, Wallet, WalletTransaction
from ..utils.payment_codes import extract_deposit_code, new_deposit_code, payment_instructions

logger = logging.getLogger(__name__)

def signed_amount(tx_type: TransactionType, amount: Decimal) -> Decimal:
    """Balance delta for a positive amount of the given type"""
    return -amount if TransactionType(tx_type).is_debit else amount

class WalletService:
    """Wallet balances and their append-only transaction log"""

    def __init__(self, db):
        self.db = db

    async def get_or_create_wallet(self, user_id: UUID, conn=None) -> Dict[str, Any]:
        async with self.db.connection(conn) as conn:
            await conn.execute("""
                INSERT INTO wallets (user_id)
                VALUES ($1)
                ON CONFLICT (user_id) DO NOTHING
            """, user_id)
            wallet = await conn.fetchrow("SELECT * FROM wallets WHERE user_id = $1", user_id)
            return dict(wallet)

    async def get_balance(self, user_id: UUID, conn=None) -> Decimal:
        wallet = await self.get_or_create_wallet(user_id, conn)
        return wallet['balance']

    async def post_transaction(self, wallet_id: UUID, amount: Decimal, tx_type: TransactionType,
                               description: Optional[str] = None,
                               reference_type: Optional[str] = None,
                               reference_id: Any = None,
                               provider: Optional[str] = None,
                               conn=None) -> UUID:
        """The only path that changes a wallet balance.

        Locks the wallet row, applies the signed amount, updates the running
        totals and writes the audit row, all in one atomic unit.
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Transaction amount must be positive")
        tx_type = TransactionType(tx_type)

        async with self.db.transaction(conn) as conn:
            wallet = await conn.fetchrow("""
                SELECT id, user_id, balance
                FROM wallets
                WHERE id = $1
                FOR UPDATE
            """, wallet_id)

            if not wallet:
                raise NotFound(f"Wallet {wallet_id} not found")

            balance_before = wallet['balance']
            if tx_type.is_debit and balance_before < amount:
                raise InsufficientBalance(amount, balance_before)

            balance_after = balance_before + signed_amount(tx_type, amount)

            await conn.execute("""
                UPDATE wallets
                SET balance = $2,
                    total_deposited = total_deposited + $3,
                    total_spent = total_spent + $4,
                    updated_at = NOW()
                WHERE id = $1
            """,
                wallet_id,
                balance_after,
                amount if tx_type == TransactionType.DEPOSIT else Decimal(0),
                amount if tx_type == TransactionType.PURCHASE else Decimal(0)
            )

            transaction_id = await conn.fetchval("""
                INSERT INTO wallet_transactions (
                    wallet_id, user_id, type, amount,
                    balance_before, balance_after, description,
                    reference_type, reference_id, status, provider
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, 'success', $10)
                RETURNING id
            """,
                wallet_id,
                wallet['user_id'],
                tx_type.value,
                amount,
                balance_before,
                balance_after,
                description,
                reference_type,
                str(reference_id) if reference_id is not None else None,
                provider
            )

        logger.info(
            f"Wallet {wallet_id} {tx_type.value} {amount}: {balance_before} -> {balance_after}"
        )
        return transaction_id

    async def deduct_from_wallet(self, user_id: UUID, amount: Decimal, description: str,
                                 reference_type: Optional[str] = None,
                                 reference_id: Any = None, conn=None) -> UUID:
        async with self.db.transaction(conn) as conn:
            wallet = await self.get_or_create_wallet(user_id, conn)
            return await self.post_transaction(
                wallet['id'], amount, TransactionType.PURCHASE, description,
                reference_type, reference_id, provider="wallet", conn=conn
            )

    async def refund_to_wallet(self, user_id: UUID, amount: Decimal, description: str,
                               reference_type: Optional[str] = None,
                               reference_id: Any = None, conn=None) -> UUID:
        async with self.db.transaction(conn) as conn:
            wallet = await self.get_or_create_wallet(user_id, conn)
            return await self.post_transaction(
                wallet['id'], amount, TransactionType.REFUND, description,
                reference_type, reference_id, provider="system", conn=conn
            )

    async def pay_with_wallet(self, user_id: UUID, order_id: UUID, amount: Decimal, conn=None) -> UUID:
        return await self.deduct_from_wallet(
            user_id, amount, f"Payment for order {order_id}",
            reference_type="order", reference_id=order_id, conn=conn
        )

    async def get_wallet_info(self, user_id: UUID) -> Dict[str, Any]:
        """Wallet row plus per-type transaction counts and sums"""
        async with self.db.connection() as conn:
            wallet = await self.get_or_create_wallet(user_id, conn)
            rows = await conn.fetch("""
                SELECT type, COUNT(*) AS count, COALESCE(SUM(amount), 0) AS total
                FROM wallet_transactions
                WHERE wallet_id = $1
                GROUP BY type
            """, wallet['id'])

        stats = {tx_type.value: {"count": 0, "total": Decimal(0)} for tx_type in TransactionType}
        for row in rows:
            stats[row['type']] = {"count": row['count'], "total": row['total']}

        return {"wallet": Wallet.model_validate(wallet), "stats": stats}

    async def get_transactions(self, user_id: UUID, tx_type: Optional[TransactionType] = None,
                               start: Optional[datetime] = None, end: Optional[datetime] = None,
                               page: int = 1, limit: int = 20) -> Dict[str, Any]:
        conditions = ["user_id = $1"]
        params: List[Any] = [user_id]

        if tx_type:
            params.append(TransactionType(tx_type).value)
            conditions.append(f"type = ${len(params)}")
        if start:
            params.append(start)
            conditions.append(f"created_at >= ${len(params)}")
        if end:
            params.append(end)
            conditions.append(f"created_at <= ${len(params)}")

        where = " AND ".join(conditions)
        page = max(page, 1)

        async with self.db.connection() as conn:
            total = await conn.fetchval(
                f"SELECT COUNT(*) FROM wallet_transactions WHERE {where}", *params
            )
            rows = await conn.fetch(f"""
                SELECT *
                FROM wallet_transactions
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            """, *params, limit, (page - 1) * limit)

        return {
            "transactions": [WalletTransaction.model_validate(dict(row)) for row in rows],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    async def create_deposit_request(self, user_id: UUID, amount: Decimal,
                                     payment_method: str = "sepay") -> Dict[str, Any]:
        """Open a pending top-up and return how to pay it"""
        amount = Decimal(amount)
        if amount < Config.MIN_DEPOSIT_AMOUNT:
            raise ValidationError(f"Minimum deposit amount is {Config.MIN_DEPOSIT_AMOUNT}")
        if amount > Config.MAX_DEPOSIT_AMOUNT:
            raise ValidationError(f"Maximum deposit amount is {Config.MAX_DEPOSIT_AMOUNT}")

        async with self.db.transaction() as conn:
            wallet = await self.get_or_create_wallet(user_id, conn)

            # Codes are random; a clash on the unique index just draws again
            for attempt in range(3):
                code = new_deposit_code()
                try:
                    async with conn.transaction():
                        deposit = await conn.fetchrow("""
                            INSERT INTO deposit_requests (
                                user_id, wallet_id, amount, payment_method,
                                payment_code, provider, status, expires_at
                            ) VALUES (
                                $1, $2, $3, $4, $5, 'sepay', 'pending',
                                NOW() + make_interval(mins => $6)
                            )
                            RETURNING *
                        """,
                            user_id,
                            wallet['id'],
                            amount,
                            payment_method,
                            code,
                            Config.DEPOSIT_EXPIRY_MINUTES
                        )
                    break
                except asyncpg.UniqueViolationError:
                    logger.warning(f"Deposit code collision on {code}, retrying")
                    if attempt == 2:
                        raise

        logger.info(f"Deposit request {deposit['payment_code']} created for user {user_id}: {amount}")
        return {
            "deposit": dict(deposit),
            "payment_instructions": payment_instructions(amount, deposit['payment_code']),
        }

    async def get_deposit_history(self, user_id: UUID, limit: int = 20, offset: int = 0) -> List[DepositRequest]:
        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                SELECT *
                FROM deposit_requests
                WHERE user_id = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
            """, user_id, limit, offset)
            return [DepositRequest.model_validate(dict(row)) for row in rows]

    async def check_deposit_status(self, user_id: UUID, deposit_id: UUID) -> Dict[str, Any]:
        async with self.db.connection() as conn:
            deposit = await conn.fetchrow("""
                SELECT *
                FROM deposit_requests
                WHERE id = $1 AND user_id = $2
            """, deposit_id, user_id)

        if not deposit:
            raise NotFound(f"Deposit request {deposit_id} not found")

        deposit = dict(deposit)
        deposit['is_expired'] = (
            deposit['status'] == DepositStatus.EXPIRED.value
            or (
                deposit['status'] == DepositStatus.PENDING.value
                and deposit['expires_at'] < datetime.now(timezone.utc)
            )
        )
        return deposit

    async def process_successful_deposit(self, deposit_id: UUID, provider_tx_id: Optional[str] = None,
                                         conn=None) -> Dict[str, Any]:
        """Complete a pending deposit and credit its wallet"""
        async with self.db.transaction(conn) as conn:
            deposit = await conn.fetchrow("""
                SELECT *
                FROM deposit_requests
                WHERE id = $1
                FOR UPDATE
            """, deposit_id)

            if not deposit:
                raise NotFound(f"Deposit request {deposit_id} not found")
            if deposit['status'] != DepositStatus.PENDING.value:
                raise InvalidState(f"Deposit request is already {deposit['status']}")

            await conn.execute("""
                UPDATE deposit_requests
                SET status = 'completed',
                    provider_tx_id = $2,
                    completed_at = NOW(),
                    updated_at = NOW()
                WHERE id = $1
            """, deposit_id, provider_tx_id)

            transaction_id = await self.post_transaction(
                deposit['wallet_id'],
                deposit['amount'],
                TransactionType.DEPOSIT,
                f"Deposit {deposit['payment_code']}",
                reference_type="deposit_request",
                reference_id=deposit_id,
                provider=deposit['provider'] or "sepay",
                conn=conn
            )

            new_balance = await conn.fetchval(
                "SELECT balance FROM wallets WHERE id = $1", deposit['wallet_id']
            )

        logger.info(f"Deposit {deposit['payment_code']} completed: +{deposit['amount']}")
        return {
            "deposit_id": deposit_id,
            "transaction_id": transaction_id,
            "amount": deposit['amount'],
            "new_balance": new_balance,
        }

    async def handle_deposit_webhook(self, payload: SepayWebhookPayload) -> Dict[str, Any]:
        """Match a bank transfer to a deposit request by its DEP code"""
        code = extract_deposit_code(payload.raw_content)
        if not code:
            raise ValidationError("No deposit code found in transfer content")

        received = payload.received_amount

        async with self.db.transaction() as conn:
            deposit = await conn.fetchrow("""
                SELECT id, amount, status
                FROM deposit_requests
                WHERE payment_code = $1
                FOR UPDATE
            """, code)

            if not deposit:
                raise NotFound(f"Deposit request {code} not found")

            if deposit['status'] != DepositStatus.PENDING.value:
                if deposit['status'] == DepositStatus.EXPIRED.value:
                    logger.warning(f"Transfer for expired deposit {code} ignored ({received})")
                return {
                    "success": True,
                    "message": "Deposit already processed",
                    "deposit_id": deposit['id'],
                    "status": deposit['status'],
                }

            if received < deposit['amount']:
                logger.warning(f"Deposit {code} underpaid: expected {deposit['amount']}, got {received}")
                raise AmountMismatch(deposit['amount'], received)

            result = await self.process_successful_deposit(
                deposit['id'], payload.provider_tx_id, conn=conn
            )

        return {"success": True, "message": "Deposit completed", **result}

    async def admin_adjust_wallet(self, user_id: UUID, amount: Decimal,
                                  description: Optional[str], admin_id: UUID) -> Dict[str, Any]:
        """Signed manual correction; positive credits, negative withdraws"""
        amount = Decimal(amount)
        if amount == 0:
            raise ValidationError("Adjustment amount must not be zero")

        tx_type = TransactionType.DEPOSIT if amount > 0 else TransactionType.WITHDRAW

        async with self.db.transaction() as conn:
            wallet = await self.get_or_create_wallet(user_id, conn)
            transaction_id = await self.post_transaction(
                wallet['id'],
                abs(amount),
                tx_type,
                description or "Admin adjustment",
                reference_type="admin_adjustment",
                reference_id=admin_id,
                provider="admin",
                conn=conn
            )
            new_balance = await conn.fetchval(
                "SELECT balance FROM wallets WHERE id = $1", wallet['id']
            )

        logger.info(f"Admin {admin_id} adjusted wallet of user {user_id} by {amount}")
        return {
            "transaction_id": transaction_id,
            "type": tx_type.value,
            "amount": amount,
            "new_balance": new_balance,
        }

    async def expire_deposit_requests(self) -> int:
        async with self.db.connection() as conn:
            rows = await conn.fetch("""
                UPDATE deposit_requests
                SET status = 'expired', updated_at = NOW()
                WHERE status = 'pending' AND expires_at < NOW()
                RETURNING id
            """)
        if rows:
            logger.info(f"Expired {len(rows)} deposit requests")
        return len(rows)
