"""
Order Service — カートロック (分散ミューテックス)

Redis の SET NX EX で (テナント, カート) ごとに短命のロックを取る。
プロセス内のロックでは複数インスタンスをまたげないため、
キーの原子的な作成と TTL による自動失効で排他制御する。

  - 取得は待たない: 既にロックがあれば即座に False
  - 解放は無条件の DEL (存在しなくてもエラーにしない)
  - Redis に到達できない場合は「取得できなかった」とみなす (fail closed)
  - ホルダーがクラッシュしても TTL で失効する
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import Locked

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = 30
LOCK_MARKER = "locked"


def lock_key(tenant_id: str, cart_id: str) -> str:
    return f"lock:{tenant_id}:{cart_id}"


class LockManager:
    """カートロックの取得と解放"""

    def __init__(self, redis: aioredis.Redis, ttl: int = DEFAULT_LOCK_TTL):
        self.redis = redis
        self.ttl = ttl

    async def acquire(self, tenant_id: str, cart_id: str, ttl: int | None = None) -> bool:
        key = lock_key(tenant_id, cart_id)
        ttl = ttl if ttl is not None else self.ttl
        try:
            acquired = await self.redis.set(key, LOCK_MARKER, nx=True, ex=ttl)
        except RedisError:
            logger.exception("Lock store unreachable, treating %s as held", key)
            return False
        return bool(acquired)

    async def release(self, tenant_id: str, cart_id: str) -> None:
        await self.redis.delete(lock_key(tenant_id, cart_id))

    @asynccontextmanager
    async def hold(
        self, tenant_id: str, cart_id: str, ttl: int | None = None
    ) -> AsyncIterator[None]:
        """
        スコープ付きでロックを保持する。

        取得できなければ Locked を送出する。ブロックを抜けるときは
        成功・失敗・キャンセルのどの経路でも必ず解放する。
        """
        if not await self.acquire(tenant_id, cart_id, ttl):
            raise Locked(
                f"Cart {cart_id} is already being checked out, retry later",
                cart_id=cart_id,
            )
        logger.debug("Acquired %s", lock_key(tenant_id, cart_id))
        try:
            yield
        finally:
            try:
                await self.release(tenant_id, cart_id)
            except RedisError:
                # TTL で失効する
                logger.exception("Failed to release %s", lock_key(tenant_id, cart_id))
            else:
                logger.debug("Released %s", lock_key(tenant_id, cart_id))
