"""
Order Service — カートストア

カートは型付きの値オブジェクト (Cart) として1つのキーに丸ごと保存する。
部分的なマージは行わない。
"""

import redis.asyncio as aioredis

from .models import Cart

DEFAULT_CART_TTL = 7 * 24 * 3600


def cart_key(tenant_id: str, cart_id: str) -> str:
    return f"cart:{tenant_id}:{cart_id}"


class CartStore:
    def __init__(self, redis: aioredis.Redis, ttl: int = DEFAULT_CART_TTL):
        self.redis = redis
        self.ttl = ttl

    async def save(self, tenant_id: str, cart: Cart) -> None:
        await self.redis.set(cart_key(tenant_id, cart.id), cart.model_dump_json(), ex=self.ttl)

    async def get(self, tenant_id: str, cart_id: str) -> Cart | None:
        raw = await self.redis.get(cart_key(tenant_id, cart_id))
        if raw is None:
            return None
        return Cart.model_validate_json(raw)

    async def discard(self, tenant_id: str, cart_id: str) -> bool:
        return bool(await self.redis.delete(cart_key(tenant_id, cart_id)))
