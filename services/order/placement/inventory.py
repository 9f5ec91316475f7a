"""
Order Service — 在庫台帳

注文トランザクションの中で在庫を検証・減算する。
呼び出し側のセッション (トランザクション) を必ず受け取り、
後続の失敗でロールバックされれば減算も自動的に取り消される。

在庫管理が有効 (track_quantity) な商品だけが対象。
減算は「quantity >= 要求数」を条件にした UPDATE で行うため、
別トランザクションと競合しても在庫が負になることはない。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InsufficientInventory, NotFound
from .models import CartItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockLevel:
    product_id: str
    name: str
    quantity: int
    track_quantity: bool


async def get_stock(
    session: AsyncSession, tenant_id: str, product_id: str
) -> StockLevel | None:
    result = await session.execute(
        text("""
            SELECT id, name, quantity, track_quantity
            FROM products
            WHERE tenant_id = :tenant_id AND id = :id
        """),
        {"tenant_id": tenant_id, "id": product_id},
    )
    row = result.fetchone()
    if not row:
        return None
    return StockLevel(
        product_id=row.id,
        name=row.name,
        quantity=row.quantity,
        track_quantity=bool(row.track_quantity),
    )


def _insufficient(stock: StockLevel, requested: int) -> InsufficientInventory:
    return InsufficientInventory(
        f"Insufficient stock for {stock.name or stock.product_id}: "
        f"requested={requested}, available={stock.quantity}",
        product_id=stock.product_id,
        requested=requested,
        available=stock.quantity,
    )


class InventoryLedger:
    async def validate_and_decrement(
        self, session: AsyncSession, tenant_id: str, item: CartItem
    ) -> None:
        """
        在庫を検証して減算する。

        1. トランザクション内で商品を読む (なければ NotFound)
        2. 在庫管理対象で不足していれば InsufficientInventory
        3. 条件付き UPDATE で減算 (0 行なら競合で不足 → 読み直して InsufficientInventory)
        """
        stock = await get_stock(session, tenant_id, item.product_id)
        if stock is None:
            raise NotFound(
                f"Product {item.product_id} not found",
                entity="product",
                entity_id=item.product_id,
            )
        if not stock.track_quantity:
            return
        if stock.quantity < item.quantity:
            raise _insufficient(stock, item.quantity)

        result = await session.execute(
            text("""
                UPDATE products
                SET quantity = quantity - :qty, updated_at = :now
                WHERE tenant_id = :tenant_id AND id = :id
                  AND track_quantity = :tracked AND quantity >= :qty
            """),
            {
                "qty": item.quantity,
                "now": datetime.now(timezone.utc),
                "tenant_id": tenant_id,
                "id": item.product_id,
                "tracked": True,
            },
        )
        if result.rowcount == 0:
            current = await get_stock(session, tenant_id, item.product_id) or stock
            raise _insufficient(current, item.quantity)

        logger.debug(
            "Decremented %s by %d (was %d)", item.product_id, item.quantity, stock.quantity
        )

    async def restore(
        self, session: AsyncSession, tenant_id: str, item: CartItem
    ) -> None:
        """在庫を戻す（キャンセル時の再入庫）。在庫管理対象外の商品は変更しない。"""
        await session.execute(
            text("""
                UPDATE products
                SET quantity = quantity + :qty, updated_at = :now
                WHERE tenant_id = :tenant_id AND id = :id AND track_quantity = :tracked
            """),
            {
                "qty": item.quantity,
                "now": datetime.now(timezone.utc),
                "tenant_id": tenant_id,
                "id": item.product_id,
                "tracked": True,
            },
        )
