"""テスト用のデータ投入・読み出しヘルパー"""

import json

from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import text

from placement.models import Cart, CartItem, CustomerInfo, Pricing, PlaceOrderRequest

TENANT = "store-1"


async def add_product(
    session_factory,
    product_id: str,
    quantity: int,
    track_quantity: bool = True,
    tenant_id: str = TENANT,
    name: str = "",
) -> None:
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                text("""
                    INSERT INTO products (id, tenant_id, name, quantity, track_quantity)
                    VALUES (:id, :tenant_id, :name, :quantity, :track_quantity)
                """),
                {
                    "id": product_id,
                    "tenant_id": tenant_id,
                    "name": name or product_id,
                    "quantity": quantity,
                    "track_quantity": track_quantity,
                },
            )


async def add_customer(
    session_factory,
    customer_id: str,
    name: str = "Alice",
    phone: str | None = "0100",
    email: str | None = "alice@example.com",
    tenant_id: str = TENANT,
) -> None:
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                text("""
                    INSERT INTO customers (id, tenant_id, name, phone, email, delivery_address)
                    VALUES (:id, :tenant_id, :name, :phone, :email, :address)
                """),
                {
                    "id": customer_id,
                    "tenant_id": tenant_id,
                    "name": name,
                    "phone": phone,
                    "email": email,
                    "address": json.dumps({"street": "1 Old Road", "city": "Oldtown"}),
                },
            )


async def get_customer(session_factory, customer_id: str, tenant_id: str = TENANT):
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT * FROM customers WHERE tenant_id = :t AND id = :id"),
            {"t": tenant_id, "id": customer_id},
        )
        return result.fetchone()


async def product_quantity(session_factory, product_id: str, tenant_id: str = TENANT) -> int:
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT quantity FROM products WHERE tenant_id = :t AND id = :id"),
            {"t": tenant_id, "id": product_id},
        )
        return result.scalar_one()


async def count_orders(session_factory, tenant_id: str = TENANT) -> int:
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT COUNT(*) FROM orders WHERE tenant_id = :t"), {"t": tenant_id}
        )
        return result.scalar_one()


async def count_counters(session_factory, tenant_id: str = TENANT) -> int:
    async with session_factory() as session:
        result = await session.execute(
            text("SELECT COUNT(*) FROM counters WHERE tenant_id = :t"), {"t": tenant_id}
        )
        return result.scalar_one()


def make_request(
    cart_id: str = "c1",
    items: list[tuple[str, int]] | None = None,
    customer: CustomerInfo | None = None,
    final_total: float = 20.0,
) -> PlaceOrderRequest:
    items = items if items is not None else [("p1", 2)]
    return PlaceOrderRequest(
        cart=Cart(
            id=cart_id,
            items=[
                CartItem(
                    product_id=product_id,
                    product_name=f"Product {product_id}",
                    quantity=quantity,
                    base_price=10.0,
                    total_price=10.0 * quantity,
                )
                for product_id, quantity in items
            ],
        ),
        customer=customer or CustomerInfo(name="Guest", email="guest@example.com"),
        pricing=Pricing(subtotal=final_total, final_total=final_total),
    )


class UnreachableRedis:
    """すべてのコマンドで接続エラーになる Redis"""

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def get(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def delete(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def xadd(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def scan_iter(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")
        yield  # pragma: no cover


class RecordingRedis:
    """SET の引数を記録するだけの Redis"""

    def __init__(self) -> None:
        self.sets: list[dict] = []

    async def set(self, key, value, **kwargs):
        self.sets.append({"key": key, **kwargs})
        return True
