"""
Order Service — FastAPI エントリーポイント

CQRS パターンに従い、Command (POST/PUT/DELETE) と Query (GET) のエンドポイントを分離。
注文作成は Idempotency-Key ヘッダー必須で、同じキーの再送には
作成済みの注文をそのまま返す。

    uvicorn placement.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import commands, queries, schema
from .carts import CartStore
from .config import DATABASE_URL, LOG_LEVEL, REDIS_URL, Settings
from .errors import InvalidRequest, NotFound, OrderError
from .models import Cart, Order, PlaceOrderRequest
from .orchestrator import OrderPlacementOrchestrator

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
redis_pool: aioredis.Redis | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool
    redis_pool = aioredis.from_url(REDIS_URL, decode_responses=True)
    await schema.create_all(engine)
    yield
    await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Order Service", lifespan=lifespan)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """スキーマ違反のボディも InvalidRequest として返す"""
    errors = [
        {
            "loc": ".".join(str(part) for part in e["loc"]),
            "msg": e["msg"],
            "type": e["type"],
        }
        for e in exc.errors()
    ]
    message = "; ".join(f"{e['loc']}: {e['msg']}" for e in errors) or "Malformed request"
    error = InvalidRequest(message, errors=errors)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# ── Dependencies ─────────────────────────────────


def get_redis() -> aioredis.Redis:
    return redis_pool


def get_session_factory() -> sessionmaker:
    return async_session


def get_orchestrator(
    redis: aioredis.Redis = Depends(get_redis),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> OrderPlacementOrchestrator:
    return OrderPlacementOrchestrator(session_factory, redis, Settings())


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/tenants/{tenant_id}/orders", response_model=Order, status_code=201)
async def cmd_place_order(
    tenant_id: str,
    req: PlaceOrderRequest,
    response: Response,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    orchestrator: OrderPlacementOrchestrator = Depends(get_orchestrator),
):
    """注文作成コマンド"""
    result = await orchestrator.place(tenant_id, idempotency_key, req)
    if result.replayed:
        response.status_code = 200
        response.headers["Idempotent-Replayed"] = "true"
    return result.order


@app.post("/commands/tenants/{tenant_id}/orders/{order_id}/cancel", response_model=Order)
async def cmd_cancel_order(
    tenant_id: str,
    order_id: str,
    redis: aioredis.Redis = Depends(get_redis),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """注文キャンセルコマンド（在庫を戻す）"""
    async with session_factory() as session:
        return await commands.cancel_order(session, redis, tenant_id, order_id)


@app.put("/commands/tenants/{tenant_id}/carts/{cart_id}", response_model=Cart)
async def cmd_save_cart(
    tenant_id: str,
    cart_id: str,
    cart: Cart,
    redis: aioredis.Redis = Depends(get_redis),
):
    if cart.id != cart_id:
        raise InvalidRequest("Cart id in body does not match the path")
    await CartStore(redis).save(tenant_id, cart)
    return cart


@app.delete("/commands/tenants/{tenant_id}/carts/{cart_id}")
async def cmd_discard_cart(
    tenant_id: str,
    cart_id: str,
    redis: aioredis.Redis = Depends(get_redis),
):
    if not await CartStore(redis).discard(tenant_id, cart_id):
        raise NotFound(f"Cart {cart_id} not found", entity="cart", entity_id=cart_id)
    return {"cart_id": cart_id, "discarded": True}


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/tenants/{tenant_id}/orders", response_model=list[Order])
async def query_list_orders(
    tenant_id: str,
    limit: int = 50,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        return await queries.list_orders(session, tenant_id, limit)


@app.get("/queries/tenants/{tenant_id}/orders/{order_id}", response_model=Order)
async def query_get_order(
    tenant_id: str,
    order_id: str,
    session_factory: sessionmaker = Depends(get_session_factory),
):
    async with session_factory() as session:
        order = await queries.get_order(session, tenant_id, order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found", entity="order", entity_id=order_id)
        return order


@app.get("/queries/tenants/{tenant_id}/carts/{cart_id}", response_model=Cart)
async def query_get_cart(
    tenant_id: str,
    cart_id: str,
    redis: aioredis.Redis = Depends(get_redis),
):
    cart = await CartStore(redis).get(tenant_id, cart_id)
    if cart is None:
        raise NotFound(f"Cart {cart_id} not found", entity="cart", entity_id=cart_id)
    return cart


@app.get("/health")
async def health():
    return {"status": "ok", "service": "order-service"}
