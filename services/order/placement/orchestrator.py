"""
Order Placement Orchestrator — 注文作成トランザクション

カート1つから注文を「ちょうど1件」作成する。

  フロー:
  ┌──────────────────────────────────────────────────────────────┐
  │  1. Received            顧客情報・カートを検証                │
  │  2. IdempotencyReserved 冪等キーを予約 (重複なら即終了)        │
  │  3. LockAcquired        カートロックを取得 (取れなければ Locked)│
  │  4. NumbersAssigned     店舗を確認し、注文・請求書番号を採番   │
  │  5. TransactionOpened   DB トランザクション開始                │
  │  6. InventoryReserved   明細ごとに在庫を検証・減算             │
  │  7. CustomerUpserted    既存顧客の連絡先・配送先を更新         │
  │  8. OrderPersisted      注文を挿入してコミット                 │
  │  9. Resolved                                                  │
  │     ├─ 成功 → 冪等レコード completed / キャッシュ無効化 /      │
  │     │         メールジョブ投入 / ロック解放                     │
  │     └─ 失敗 → ロールバック / 冪等レコード failed / ロック解放  │
  └──────────────────────────────────────────────────────────────┘

ロックと冪等レコードだけがトランザクション外で変更されるリソースで、
どの終了経路でも必ず解放・確定する。
採番 (4) はトランザクションの外なので、失敗時に欠番が生じる。
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import commands, queries
from .cache import CacheInvalidator
from .config import MAIL_STREAM, MAIL_STREAM_MAXLEN, Settings
from .errors import (
    DuplicateCompleted,
    InvalidRequest,
    Locked,
    NotFound,
    OrderError,
    StoreUnavailable,
)
from .idempotency import IdempotencyGatekeeper
from .inventory import InventoryLedger
from .locks import LockManager
from .mailer import MailQueue
from .models import ManualCustomer, Order, PlaceOrderRequest
from .sequences import INVOICE_NUMBER, ORDER_NUMBER, SequenceGenerator

logger = logging.getLogger(__name__)


class PlacementState(str, Enum):
    RECEIVED = "Received"
    IDEMPOTENCY_RESERVED = "IdempotencyReserved"
    LOCK_ACQUIRED = "LockAcquired"
    NUMBERS_ASSIGNED = "NumbersAssigned"
    TRANSACTION_OPENED = "TransactionOpened"
    INVENTORY_RESERVED = "InventoryReserved"
    CUSTOMER_UPSERTED = "CustomerUpserted"
    ORDER_PERSISTED = "OrderPersisted"
    RESOLVED = "Resolved"


class PlacementResult:
    """注文と、それが冪等キーによる再送の応答かどうか"""

    def __init__(self, order: Order, replayed: bool = False):
        self.order = order
        self.replayed = replayed


def _as_order_error(exc: Exception) -> OrderError:
    if isinstance(exc, OrderError):
        return exc
    if isinstance(exc, (RedisError, SQLAlchemyError, OSError)):
        return StoreUnavailable(f"Store unavailable: {exc}")
    return OrderError(f"Order placement failed: {exc}")


class OrderPlacementOrchestrator:
    """注文作成のオーケストレーター"""

    def __init__(
        self,
        session_factory: sessionmaker,
        redis: aioredis.Redis,
        settings: Settings | None = None,
        *,
        locks: LockManager | None = None,
        gatekeeper: IdempotencyGatekeeper | None = None,
        sequences: SequenceGenerator | None = None,
        inventory: InventoryLedger | None = None,
        invalidator: CacheInvalidator | None = None,
        mailer: MailQueue | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.locks = locks or LockManager(redis, ttl=self.settings.lock_ttl)
        self.gatekeeper = gatekeeper or IdempotencyGatekeeper(
            redis,
            processing_ttl=self.settings.processing_ttl,
            completed_ttl=self.settings.completed_ttl,
            failed_ttl=self.settings.failed_ttl,
        )
        self.sequences = sequences or SequenceGenerator(session_factory)
        self.inventory = inventory or InventoryLedger()
        self.invalidator = invalidator or CacheInvalidator(redis)
        self.mailer = mailer or MailQueue(redis, MAIL_STREAM, MAIL_STREAM_MAXLEN)

    async def place(
        self,
        tenant_id: str,
        idempotency_key: str | None,
        request: PlaceOrderRequest,
    ) -> PlacementResult:
        """
        注文を作成する。

        同じ冪等キーでの再送には、作成済みの注文 (replayed=True) か
        記録済みのエラー (DuplicateFailed) をそのまま返す。
        """
        cart_id = request.cart.id

        # ── 1. Received ──────────────────────────
        self._validate(tenant_id, request)
        self._trace(PlacementState.RECEIVED, tenant_id, cart_id)

        # ── 2. IdempotencyReserved ───────────────
        try:
            await self.gatekeeper.admit(tenant_id, idempotency_key)
        except DuplicateCompleted as dup:
            logger.info("Replaying order %s for key %s", dup.order_id, idempotency_key)
            if dup.snapshot is not None:
                return PlacementResult(Order.model_validate(dup.snapshot), replayed=True)
            return PlacementResult(await self._load(tenant_id, dup.order_id), replayed=True)
        self._trace(PlacementState.IDEMPOTENCY_RESERVED, tenant_id, cart_id)

        # ── 3. LockAcquired ──────────────────────
        try:
            async with self.locks.hold(tenant_id, cart_id):
                self._trace(PlacementState.LOCK_ACQUIRED, tenant_id, cart_id)
                try:
                    order = await self._execute(tenant_id, request)
                except Exception as exc:
                    error = _as_order_error(exc)
                    logger.warning(
                        "Order placement failed for cart %s: %s %s",
                        cart_id, error.kind, error.message,
                    )
                    await self._record_failure(tenant_id, idempotency_key, error)
                    if error is exc:
                        raise
                    raise error from exc
                await self._resolve(tenant_id, idempotency_key, order)
        except Locked as exc:
            logger.info("Cart %s is locked, rejecting key %s", cart_id, idempotency_key)
            await self._record_failure(tenant_id, idempotency_key, exc)
            raise

        self._trace(PlacementState.RESOLVED, tenant_id, cart_id)
        return PlacementResult(order)

    # ── ステップ ─────────────────────────────────

    @staticmethod
    def _validate(tenant_id: str, request: PlaceOrderRequest) -> None:
        if not tenant_id:
            raise InvalidRequest("Tenant is required")
        if not request.customer.has_identity():
            raise InvalidRequest("Either customer_id or customer name is required")
        if not request.cart.items:
            raise InvalidRequest("Cart has no items")

    async def _execute(self, tenant_id: str, request: PlaceOrderRequest) -> Order:
        cart_id = request.cart.id

        # ── 4. NumbersAssigned ───────────────────
        # 存在しない店舗のカウンターは作らない
        async with self.session_factory() as session:
            if not await queries.store_exists(session, tenant_id):
                raise NotFound(
                    f"Store {tenant_id} doesn't exist", entity="store", entity_id=tenant_id
                )
        # トランザクション外で採番する。失敗時の欠番は許容。
        order_number = await self.sequences.get_next(tenant_id, ORDER_NUMBER)
        invoice_number = await self.sequences.get_next(tenant_id, INVOICE_NUMBER)
        self._trace(PlacementState.NUMBERS_ASSIGNED, tenant_id, cart_id)

        order = self._build_order(tenant_id, request, order_number, invoice_number)

        # ── 5. TransactionOpened ─────────────────
        async with self.session_factory() as session:
            async with session.begin():
                self._trace(PlacementState.TRANSACTION_OPENED, tenant_id, cart_id)

                # ── 6. InventoryReserved ─────────
                for item in request.cart.items:
                    await self.inventory.validate_and_decrement(session, tenant_id, item)
                self._trace(PlacementState.INVENTORY_RESERVED, tenant_id, cart_id)

                # ── 7. CustomerUpserted ──────────
                if request.customer.customer_id:
                    await commands.refresh_customer(session, tenant_id, request.customer)
                self._trace(PlacementState.CUSTOMER_UPSERTED, tenant_id, cart_id)

                # ── 8. OrderPersisted ────────────
                await commands.insert_order(session, order)
            # session.begin() を抜けた時点でコミット済み (例外時はロールバック)
        self._trace(PlacementState.ORDER_PERSISTED, tenant_id, cart_id)

        logger.info(
            "Placed order %s (#%d, invoice #%d) for cart %s",
            order.id, order_number, invoice_number, cart_id,
        )
        return order

    @staticmethod
    def _build_order(
        tenant_id: str,
        request: PlaceOrderRequest,
        order_number: int,
        invoice_number: int,
    ) -> Order:
        customer = request.customer
        manual_customer = None
        if not customer.customer_id:
            manual_customer = ManualCustomer(
                name=customer.name,
                phone=customer.phone,
                email=customer.email,
                delivery_address=customer.delivery_address,
            )
        now = datetime.now(timezone.utc)
        return Order(
            id=str(uuid4()),
            tenant_id=tenant_id,
            order_number=order_number,
            invoice_number=invoice_number,
            cart_id=request.cart.id,
            customer_id=customer.customer_id or None,
            manual_customer=manual_customer,
            items=request.cart.items,
            pricing=request.pricing,
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )

    async def _resolve(self, tenant_id: str, key: str, order: Order) -> None:
        """コミット後の後処理。ここでの失敗は注文結果を変えない。"""
        try:
            await self.gatekeeper.complete(
                tenant_id, key, order.id, snapshot=order.model_dump(mode="json")
            )
        except RedisError:
            logger.exception(
                "Order %s committed but idempotency key %s was not completed", order.id, key
            )
        await self.invalidator.invalidate_after_order(tenant_id, order.cart_id)
        await self.mailer.enqueue_order_placed(order)

    async def _record_failure(self, tenant_id: str, key: str, error: OrderError) -> None:
        try:
            await self.gatekeeper.fail(tenant_id, key, error)
        except RedisError:
            logger.exception("Failed to record failure for idempotency key %s", key)

    async def _load(self, tenant_id: str, order_id: str) -> Order:
        try:
            async with self.session_factory() as session:
                order = await queries.get_order(session, tenant_id, order_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Order store unavailable: {e}") from e
        if order is None:
            raise NotFound(f"Order {order_id} not found", entity="order", entity_id=order_id)
        return order

    @staticmethod
    def _trace(state: PlacementState, tenant_id: str, cart_id: str) -> None:
        logger.debug("[%s/%s] %s", tenant_id, cart_id, state.value)
