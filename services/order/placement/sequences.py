"""
Order Service — 連番ジェネレーター

(テナント, 名前) ごとの連番を発行する。注文番号と請求書番号は独立した系列。

採番は注文トランザクションの前に、独立した短いトランザクションで行う。
注文トランザクションが後でロールバックされても番号は戻らない
(= 欠番が生じうる)。番号の再利用は起こらない。
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

ORDER_NUMBER = "orderNumber"
INVOICE_NUMBER = "invoiceNumber"

_NEXT_SQL = text("""
    INSERT INTO counters (tenant_id, name, seq)
    VALUES (:tenant_id, :name, 1)
    ON CONFLICT (tenant_id, name)
    DO UPDATE SET seq = counters.seq + 1
    RETURNING seq
""")


async def increment(session: AsyncSession, tenant_id: str, name: str) -> int:
    """カウンタを 1 進めて新しい値を返す。初回は 0 から始まり 1 を返す (upsert)。"""
    result = await session.execute(_NEXT_SQL, {"tenant_id": tenant_id, "name": name})
    return result.scalar_one()


class SequenceGenerator:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def get_next(self, tenant_id: str, name: str) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                seq = await increment(session, tenant_id, name)
        logger.debug("Issued %s #%d for tenant %s", name, seq, tenant_id)
        return seq
