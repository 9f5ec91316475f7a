"""
Order Service — クエリハンドラ (CQRS の Read 側)

注文はテナント単位で読み出す。JSON 列は文字列で返る
ドライバ (aiosqlite, asyncpg) があるためここで復元する。
"""

import json

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order


def _json(value):
    return json.loads(value) if isinstance(value, str) else value


def row_to_order(row) -> Order:
    return Order(
        id=row.id,
        tenant_id=row.tenant_id,
        order_number=row.order_number,
        invoice_number=row.invoice_number,
        cart_id=row.cart_id,
        customer_id=row.customer_id,
        manual_customer=_json(row.manual_customer),
        items=_json(row.items),
        pricing=_json(row.pricing),
        notes=row.notes,
        order_status=row.order_status,
        payment_status=row.payment_status,
        fulfillment_status=row.fulfillment_status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def get_order(session: AsyncSession, tenant_id: str, order_id: str) -> Order | None:
    """注文を1件取得する。"""
    result = await session.execute(
        text("SELECT * FROM orders WHERE tenant_id = :tenant_id AND id = :id"),
        {"tenant_id": tenant_id, "id": order_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return row_to_order(row)


async def list_orders(
    session: AsyncSession, tenant_id: str, limit: int = 50
) -> list[Order]:
    """新しい順に注文一覧を取得する。"""
    result = await session.execute(
        text("""
            SELECT * FROM orders
            WHERE tenant_id = :tenant_id
            ORDER BY created_at DESC, order_number DESC
            LIMIT :limit
        """),
        {"tenant_id": tenant_id, "limit": limit},
    )
    return [row_to_order(row) for row in result.fetchall()]


async def store_exists(session: AsyncSession, tenant_id: str) -> bool:
    result = await session.execute(
        text("SELECT 1 FROM stores WHERE id = :tenant_id"), {"tenant_id": tenant_id}
    )
    return result.first() is not None
