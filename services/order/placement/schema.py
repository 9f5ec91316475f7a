"""
Order Service — テーブル定義

PostgreSQL (asyncpg) と SQLite (aiosqlite, テスト用) の両方で動く DDL。
ドキュメント的な値 (明細・価格・顧客スナップショット) は JSONB 列に
json.dumps した文字列で保存する。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

DDL = [
    """
    CREATE TABLE IF NOT EXISTS stores (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(255) NOT NULL DEFAULT ''
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS products (
        id VARCHAR(64) NOT NULL,
        tenant_id VARCHAR(64) NOT NULL,
        name VARCHAR(255) NOT NULL DEFAULT '',
        quantity INTEGER NOT NULL DEFAULT 0,
        track_quantity BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TIMESTAMP WITH TIME ZONE,
        PRIMARY KEY (tenant_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customers (
        id VARCHAR(64) NOT NULL,
        tenant_id VARCHAR(64) NOT NULL,
        name VARCHAR(255) NOT NULL,
        phone VARCHAR(64),
        email VARCHAR(255),
        delivery_address JSONB,
        updated_at TIMESTAMP WITH TIME ZONE,
        PRIMARY KEY (tenant_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id VARCHAR(64) PRIMARY KEY,
        tenant_id VARCHAR(64) NOT NULL,
        order_number INTEGER NOT NULL,
        invoice_number INTEGER NOT NULL,
        cart_id VARCHAR(64) NOT NULL,
        customer_id VARCHAR(64),
        manual_customer JSONB,
        items JSONB NOT NULL,
        pricing JSONB NOT NULL,
        notes TEXT,
        order_status VARCHAR(32) NOT NULL,
        payment_status VARCHAR(32) NOT NULL,
        fulfillment_status VARCHAR(32) NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL,
        updated_at TIMESTAMP WITH TIME ZONE NOT NULL,
        UNIQUE (tenant_id, order_number)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_orders_tenant_created
        ON orders (tenant_id, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS counters (
        tenant_id VARCHAR(64) NOT NULL,
        name VARCHAR(64) NOT NULL,
        seq INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (tenant_id, name)
    )
    """,
]


async def create_all(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in DDL:
            await conn.execute(text(statement))
