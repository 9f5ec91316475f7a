"""
Order Service — キャッシュ無効化

コミット後に、読み取り系キャッシュ (商品・カテゴリ・注文一覧) と
注文済みカートを削除する。キャッシュキーは

    {種別}:store{テナント}:{クエリのハッシュ}

の形式で、テナント単位でまとめて消す。
無効化はコミット後のベストエフォートで、失敗しても注文結果は変わらない。
"""

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .carts import cart_key

logger = logging.getLogger(__name__)

PRODUCTS = "products"
CATEGORIES = "categories"
ORDERS = "orders"


def cache_pattern(main_key: str, tenant_id: str) -> str:
    return f"{main_key}:store{tenant_id}:*"


class CacheInvalidator:
    def __init__(self, redis: aioredis.Redis, batch_size: int = 500):
        self.redis = redis
        self.batch_size = batch_size

    async def _delete_matching(self, pattern: str) -> int:
        deleted = 0
        batch: list[str] = []
        async for key in self.redis.scan_iter(match=pattern, count=self.batch_size):
            batch.append(key)
            if len(batch) >= self.batch_size:
                deleted += await self.redis.delete(*batch)
                batch = []
        if batch:
            deleted += await self.redis.delete(*batch)
        return deleted

    async def _invalidate(self, tenant_id: str, main_keys: tuple[str, ...], extra: list[str]) -> int:
        deleted = 0
        try:
            for main_key in main_keys:
                deleted += await self._delete_matching(cache_pattern(main_key, tenant_id))
            if extra:
                deleted += await self.redis.delete(*extra)
        except RedisError:
            logger.warning("Cache invalidation failed for tenant %s", tenant_id, exc_info=True)
            return deleted
        logger.debug("Invalidated %d cache keys for tenant %s", deleted, tenant_id)
        return deleted

    async def invalidate_after_order(self, tenant_id: str, cart_id: str) -> int:
        """注文確定後: 在庫表示と注文一覧のキャッシュ、注文済みカートを消す。"""
        return await self._invalidate(
            tenant_id, (PRODUCTS, CATEGORIES, ORDERS), [cart_key(tenant_id, cart_id)]
        )

    async def invalidate_products(self, tenant_id: str) -> int:
        return await self._invalidate(tenant_id, (PRODUCTS, CATEGORIES, ORDERS), [])
