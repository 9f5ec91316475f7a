"""
Order Service — メール送信キュー

注文確定メールは Redis Streams にジョブとして積むだけ (fire-and-forget)。
送信・リトライ・バックオフは別プロセスのワーカーの責務。
Pub/Sub と違い、ワーカーが停止していてもジョブは失われない。
"""

import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .events import OrderPlaced
from .models import Order

logger = logging.getLogger(__name__)

ORDER_CONFIRMATION_TEMPLATE = "order-confirmation"


class MailQueue:
    def __init__(self, redis: aioredis.Redis, stream: str, maxlen: int | None = None):
        self.redis = redis
        self.stream = stream
        self.maxlen = maxlen

    async def enqueue_order_placed(self, order: Order) -> str | None:
        """
        注文確定メールのジョブを積む。

        宛先メールアドレスがない注文は対象外で None を返す。
        積めなかった場合もログに残すだけで None を返す。
        """
        email = order.recipient_email
        if not email:
            return None

        event = OrderPlaced(
            tenant_id=order.tenant_id,
            order_id=order.id,
            order_number=order.order_number,
            invoice_number=order.invoice_number,
            recipient_email=email,
            recipient_name=order.manual_customer.name if order.manual_customer else "Customer",
            final_total=order.pricing.final_total,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            job_id = await self.redis.xadd(
                self.stream,
                {
                    "event_type": "OrderPlaced",
                    "template": ORDER_CONFIRMATION_TEMPLATE,
                    "data": event.model_dump_json(),
                },
                maxlen=self.maxlen,
                approximate=True,
            )
        except RedisError:
            logger.exception("Failed to enqueue mail job for order %s", order.id)
            return None

        logger.info("Enqueued mail job %s for order %s", job_id, order.id)
        return job_id
