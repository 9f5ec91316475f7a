"""
Order Service — コマンドハンドラ (CQRS の Write 側)

注文トランザクション内で使う書き込みと、キャンセル (再入庫) コマンド。
書き込みは必ず呼び出し側のセッションで実行し、
アクティブなトランザクションの外で書き込むことはない。
"""

import json
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .cache import CacheInvalidator
from .errors import InvalidRequest, NotFound
from .inventory import InventoryLedger
from .models import CustomerInfo, Order
from .queries import get_order

logger = logging.getLogger(__name__)

CANCELLED = "Cancelled"


async def insert_order(session: AsyncSession, order: Order) -> None:
    """注文ドキュメントを挿入する。"""
    await session.execute(
        text("""
            INSERT INTO orders
                (id, tenant_id, order_number, invoice_number, cart_id,
                 customer_id, manual_customer, items, pricing, notes,
                 order_status, payment_status, fulfillment_status,
                 created_at, updated_at)
            VALUES
                (:id, :tenant_id, :order_number, :invoice_number, :cart_id,
                 :customer_id, :manual_customer, :items, :pricing, :notes,
                 :order_status, :payment_status, :fulfillment_status,
                 :created_at, :updated_at)
        """),
        {
            "id": order.id,
            "tenant_id": order.tenant_id,
            "order_number": order.order_number,
            "invoice_number": order.invoice_number,
            "cart_id": order.cart_id,
            "customer_id": order.customer_id,
            "manual_customer": order.manual_customer.model_dump_json()
            if order.manual_customer
            else None,
            "items": json.dumps([item.model_dump() for item in order.items]),
            "pricing": order.pricing.model_dump_json(),
            "notes": order.notes,
            "order_status": order.order_status,
            "payment_status": order.payment_status,
            "fulfillment_status": order.fulfillment_status,
            "created_at": order.created_at,
            "updated_at": order.updated_at,
        },
    )


async def refresh_customer(
    session: AsyncSession, tenant_id: str, customer: CustomerInfo
) -> None:
    """
    既存顧客の連絡先・配送先を更新する。

    指定されたフィールドだけを上書きし、None のフィールドは元の値を残す。
    """
    address = customer.delivery_address
    result = await session.execute(
        text("""
            UPDATE customers
            SET name = COALESCE(:name, name),
                phone = COALESCE(:phone, phone),
                email = COALESCE(:email, email),
                delivery_address = COALESCE(:delivery_address, delivery_address),
                updated_at = :now
            WHERE tenant_id = :tenant_id AND id = :id
        """),
        {
            "name": customer.name,
            "phone": customer.phone,
            "email": customer.email,
            "delivery_address": address.model_dump_json() if address else None,
            "now": datetime.now(timezone.utc),
            "tenant_id": tenant_id,
            "id": customer.customer_id,
        },
    )
    if result.rowcount == 0:
        raise NotFound(
            f"Customer {customer.customer_id} not found",
            entity="customer",
            entity_id=customer.customer_id,
        )


async def cancel_order(
    session: AsyncSession,
    redis: aioredis.Redis,
    tenant_id: str,
    order_id: str,
    ledger: InventoryLedger | None = None,
) -> Order:
    """
    注文キャンセルコマンド

    1. 注文を Cancelled にする (1回だけ)
    2. 同じトランザクションで在庫管理対象の明細を再入庫する
    3. コミット後に商品キャッシュを無効化する
    """
    ledger = ledger or InventoryLedger()
    now = datetime.now(timezone.utc)

    async with session.begin():
        result = await session.execute(
            text("""
                UPDATE orders
                SET order_status = :cancelled, updated_at = :now
                WHERE tenant_id = :tenant_id AND id = :id
                  AND order_status <> :cancelled
            """),
            {"cancelled": CANCELLED, "now": now, "tenant_id": tenant_id, "id": order_id},
        )
        order = await get_order(session, tenant_id, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found", entity="order", entity_id=order_id)
        if result.rowcount == 0:
            raise InvalidRequest(f"Order {order_id} is already cancelled")

        for item in order.items:
            await ledger.restore(session, tenant_id, item)

    logger.info("Cancelled order %s and restocked %d items", order_id, len(order.items))
    await CacheInvalidator(redis).invalidate_products(tenant_id)
    return order
