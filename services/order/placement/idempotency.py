"""
Order Service — 冪等性ゲートキーパー

クライアントが Idempotency-Key ヘッダーで送るキーごとに、
リクエストの結果を Redis に記録する。

状態遷移 (1キーにつき高々1回):
    processing → completed  (注文 ID と作成時の注文を記録)
    processing → failed     (エラーを記録)

再送時は記録済みの結果をそのまま返し、処理を再実行しない。
"""

import json
import logging
from dataclasses import dataclass, field

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .errors import (
    DuplicateCompleted,
    DuplicateFailed,
    DuplicateInProgress,
    InvalidRequest,
    OrderError,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

DEFAULT_PROCESSING_TTL = 300
DEFAULT_COMPLETED_TTL = 3600
DEFAULT_FAILED_TTL = 600


def idempotency_key(tenant_id: str, key: str) -> str:
    return f"idemp:{tenant_id}:{key}"


@dataclass
class IdempotencyRecord:
    status: str
    result: str | None = None
    error: dict = field(default_factory=dict)
    snapshot: dict | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (COMPLETED, FAILED)

    def dumps(self) -> str:
        data: dict = {"status": self.status}
        if self.result is not None:
            data["result"] = self.result
        if self.error:
            data["error"] = self.error
        if self.snapshot is not None:
            data["snapshot"] = self.snapshot
        return json.dumps(data)

    @classmethod
    def loads(cls, raw: str) -> "IdempotencyRecord":
        data = json.loads(raw)
        return cls(
            status=data["status"],
            result=data.get("result"),
            error=data.get("error") or {},
            snapshot=data.get("snapshot"),
        )


class IdempotencyGatekeeper:
    def __init__(
        self,
        redis: aioredis.Redis,
        processing_ttl: int = DEFAULT_PROCESSING_TTL,
        completed_ttl: int = DEFAULT_COMPLETED_TTL,
        failed_ttl: int = DEFAULT_FAILED_TTL,
    ):
        self.redis = redis
        self.processing_ttl = processing_ttl
        self.completed_ttl = completed_ttl
        self.failed_ttl = failed_ttl

    # ── 基本操作 ─────────────────────────────────

    async def reserve(self, tenant_id: str, key: str, ttl: int | None = None) -> bool:
        """processing レコードを原子的に作成する。既存なら False。"""
        created = await self.redis.set(
            idempotency_key(tenant_id, key),
            IdempotencyRecord(PROCESSING).dumps(),
            nx=True,
            ex=ttl if ttl is not None else self.processing_ttl,
        )
        return bool(created)

    async def get(self, tenant_id: str, key: str) -> IdempotencyRecord | None:
        raw = await self.redis.get(idempotency_key(tenant_id, key))
        if raw is None:
            return None
        return IdempotencyRecord.loads(raw)

    async def complete(
        self,
        tenant_id: str,
        key: str,
        result: str,
        ttl: int | None = None,
        snapshot: dict | None = None,
    ) -> None:
        """completed に上書きする。snapshot があれば再送時にそのまま返す。"""
        await self.redis.set(
            idempotency_key(tenant_id, key),
            IdempotencyRecord(COMPLETED, result=result, snapshot=snapshot).dumps(),
            ex=ttl if ttl is not None else self.completed_ttl,
        )

    async def fail(
        self, tenant_id: str, key: str, error: OrderError, ttl: int | None = None
    ) -> None:
        await self.redis.set(
            idempotency_key(tenant_id, key),
            IdempotencyRecord(FAILED, error=error.to_dict()).dumps(),
            ex=ttl if ttl is not None else self.failed_ttl,
        )

    # ── オーケストレーター向けの入口 ─────────────

    async def admit(self, tenant_id: str, key: str | None) -> None:
        """
        リクエストを受け付けるかを判定する。

        キーがなければ InvalidRequest。予約できればそのまま戻る。
        既存レコードがあれば状態に応じて Duplicate* を送出する。
        """
        if not key:
            raise InvalidRequest("Idempotency key required")

        try:
            if await self.reserve(tenant_id, key):
                logger.debug("Reserved idempotency key %s", key)
                return
            record = await self.get(tenant_id, key)
        except RedisError as e:
            raise StoreUnavailable(f"Idempotency store unavailable: {e}") from e

        if record is None:
            # 予約と読み取りの間に失効した → もう一度だけ予約を試みる
            try:
                if await self.reserve(tenant_id, key):
                    return
                record = await self.get(tenant_id, key)
            except RedisError as e:
                raise StoreUnavailable(f"Idempotency store unavailable: {e}") from e
            if record is None:
                raise DuplicateInProgress(
                    "Duplicate order request is being processed, retry later"
                )

        if record.status == COMPLETED:
            raise DuplicateCompleted(
                "Order already placed for this idempotency key",
                order_id=record.result,
                snapshot=record.snapshot,
            )
        if record.status == FAILED:
            original = record.error or {"kind": "OrderError", "message": "Previous request failed"}
            raise DuplicateFailed(original.get("message", ""), original=original)
        raise DuplicateInProgress(
            "Duplicate order request is being processed, retry later"
        )
