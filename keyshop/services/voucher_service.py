# keyshop/services/voucher_service.py
import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import asyncpg

from ..exceptions import Conflict, NotFound, ValidationError, VoucherError
from ..models.schemas import VoucherCreateRequest
from ..models.voucher import Voucher

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Columns an admin may change through update_voucher
UPDATABLE_FIELDS = (
    "description",
    "discount_percent",
    "discount_amount",
    "max_uses",
    "valid_from",
    "valid_to",
    "is_active",
)

def compute_discount(subtotal: Decimal, discount_percent: Optional[int] = None,
                     discount_amount: Optional[Decimal] = None) -> Decimal:
    """Percent first, then the flat amount; the total never drops below zero"""
    remaining = subtotal
    discount = Decimal(0)

    if discount_percent:
        percent_off = (subtotal * Decimal(discount_percent) / 100).quantize(CENT, ROUND_HALF_UP)
        percent_off = min(percent_off, remaining)
        discount += percent_off
        remaining -= percent_off

    if discount_amount:
        flat_off = min(Decimal(discount_amount), remaining)
        discount += flat_off
        remaining -= flat_off

    return discount

def check_voucher_fields(voucher: Dict[str, Any]):
    """Raise ValidationError when a voucher row would break its own rules"""
    if voucher.get('is_active') is None:
        raise ValidationError("is_active cannot be null")
    if not voucher.get('discount_percent') and not voucher.get('discount_amount'):
        raise ValidationError("Either discount_percent or discount_amount is required")
    max_uses = voucher.get('max_uses')
    used_count = voucher.get('used_count') or 0
    if max_uses is not None and max_uses < used_count:
        raise ValidationError(f"max_uses cannot be lower than used_count ({used_count})")
    if voucher.get('valid_from') and voucher.get('valid_to') and voucher['valid_from'] > voucher['valid_to']:
        raise ValidationError("valid_from must not be after valid_to")

def check_voucher_usable(voucher: Dict[str, Any], now: Optional[datetime] = None):
    """Raise VoucherError unless the voucher is active, in its window and has uses left"""
    now = now or datetime.now(timezone.utc)

    if not voucher['is_active']:
        raise VoucherError("Voucher is not active")
    if voucher['valid_from'] and now < voucher['valid_from']:
        raise VoucherError("Voucher is not valid yet")
    if voucher['valid_to'] and now > voucher['valid_to']:
        raise VoucherError("Voucher has expired")
    if voucher['max_uses'] is not None and voucher['used_count'] >= voucher['max_uses']:
        raise VoucherError("Voucher usage limit reached")

class VoucherService:
    def __init__(self, db):
        self.db = db

    async def redeem(self, code: str, subtotal: Decimal, conn=None) -> Tuple[Dict[str, Any], Decimal]:
        """Lock the voucher row, validate it and consume one use.

        Must run inside the checkout transaction so a rollback gives the use back.
        """
        async with self.db.transaction(conn) as conn:
            voucher = await conn.fetchrow("""
                SELECT * FROM vouchers
                WHERE code = $1
                FOR UPDATE
            """, code.upper())

            if not voucher:
                raise VoucherError("Invalid voucher code")

            voucher = dict(voucher)
            check_voucher_usable(voucher)
            discount = compute_discount(subtotal, voucher['discount_percent'], voucher['discount_amount'])

            await conn.execute("""
                UPDATE vouchers
                SET used_count = used_count + 1, updated_at = NOW()
                WHERE id = $1
            """, voucher['id'])

        logger.info(f"Voucher {voucher['code']} redeemed, discount {discount}")
        return voucher, discount

    async def attach_to_order(self, order_id: UUID, voucher_id: UUID,
                              discount: Decimal, conn=None):
        async with self.db.connection(conn) as conn:
            await conn.execute("""
                INSERT INTO order_vouchers (order_id, voucher_id, discount_amount)
                VALUES ($1, $2, $3)
            """, order_id, voucher_id, discount)

    async def release_for_order(self, order_id: UUID, conn=None) -> List[str]:
        """Give back the use consumed by a refunded order, floored at zero"""
        async with self.db.connection(conn) as conn:
            rows = await conn.fetch("""
                UPDATE vouchers v
                SET used_count = GREATEST(0, v.used_count - 1), updated_at = NOW()
                FROM order_vouchers ov
                WHERE ov.order_id = $1 AND ov.voucher_id = v.id
                RETURNING v.code
            """, order_id)
        codes = [row['code'] for row in rows]
        if codes:
            logger.info(f"Released voucher use for order {order_id}: {', '.join(codes)}")
        return codes

    async def preview(self, code: str, subtotal: Decimal) -> Dict[str, Any]:
        """Validate and price a voucher without consuming a use"""
        async with self.db.connection() as conn:
            voucher = await conn.fetchrow("SELECT * FROM vouchers WHERE code = $1", code.upper())

        if not voucher:
            raise VoucherError("Invalid voucher code")

        voucher = dict(voucher)
        check_voucher_usable(voucher)
        discount = compute_discount(subtotal, voucher['discount_percent'], voucher['discount_amount'])
        return {
            "code": voucher['code'],
            "description": voucher['description'],
            "subtotal": subtotal,
            "discount": discount,
            "total": subtotal - discount,
        }

    async def create_voucher(self, data: VoucherCreateRequest) -> Voucher:
        check_voucher_fields(data.model_dump())

        try:
            async with self.db.connection() as conn:
                voucher = await conn.fetchrow("""
                    INSERT INTO vouchers (
                        code, description, discount_percent, discount_amount,
                        max_uses, valid_from, valid_to, is_active
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING *
                """,
                    data.code,
                    data.description,
                    data.discount_percent,
                    data.discount_amount,
                    data.max_uses,
                    data.valid_from,
                    data.valid_to,
                    data.is_active
                )
        except asyncpg.UniqueViolationError:
            raise Conflict(f"Voucher code {data.code} already exists")

        logger.info(f"Voucher {data.code} created")
        return Voucher.model_validate(dict(voucher))

    async def list_vouchers(self, active_only: bool = False) -> List[Voucher]:
        query = "SELECT * FROM vouchers"
        if active_only:
            query += """
                WHERE is_active = TRUE
                AND (valid_to IS NULL OR valid_to > NOW())
                AND (max_uses IS NULL OR used_count < max_uses)
            """
        query += " ORDER BY created_at DESC"

        async with self.db.connection() as conn:
            rows = await conn.fetch(query)
            return [Voucher.model_validate(dict(row)) for row in rows]

    async def update_voucher(self, voucher_id: UUID, update_data: Dict[str, Any]) -> Voucher:
        unknown = set(update_data) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown voucher fields: {', '.join(sorted(unknown))}")
        if not update_data:
            raise ValidationError("Nothing to update")

        query_parts = []
        params = []
        # Column names come from the allow-list only
        for field in UPDATABLE_FIELDS:
            if field in update_data:
                params.append(update_data[field])
                query_parts.append(f"{field} = ${len(params)}")

        params.append(voucher_id)
        query = f"""
            UPDATE vouchers
            SET {', '.join(query_parts)}, updated_at = NOW()
            WHERE id = ${len(params)}
            RETURNING *
        """

        async with self.db.transaction() as conn:
            current = await conn.fetchrow("""
                SELECT * FROM vouchers
                WHERE id = $1
                FOR UPDATE
            """, voucher_id)
            if not current:
                raise NotFound(f"Voucher {voucher_id} not found")

            check_voucher_fields({**dict(current), **update_data})
            voucher = await conn.fetchrow(query, *params)

        logger.info(f"Voucher {voucher['code']} updated: {', '.join(sorted(update_data))}")
        return Voucher.model_validate(dict(voucher))

    async def deactivate_voucher(self, voucher_id: UUID) -> Voucher:
        async with self.db.connection() as conn:
            voucher = await conn.fetchrow("""
                UPDATE vouchers
                SET is_active = FALSE, updated_at = NOW()
                WHERE id = $1
                RETURNING *
            """, voucher_id)
        if not voucher:
            raise NotFound(f"Voucher {voucher_id} not found")
        logger.info(f"Voucher {voucher['code']} deactivated")
        return Voucher.model_validate(dict(voucher))
