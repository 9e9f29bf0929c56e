"""
PostgreSQL persistence for subscriptions, quota templates and live quotas.
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import asyncpg

from shared.logging import get_logger
from ...models import (
    QuotaConsumption,
    QuotaDocument,
    QuotaTemplate,
    SubscriptionRecord,
    coerce_limit,
)
from ..periods import next_month_start, utcnow
from .base import EntitlementStoreError, QuotaNotFoundError, resource_path, seed_quota_limits

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_SELECT_ACTIVE_QUOTA = """
    SELECT organization_id, plan_id, limits, period_start, period_end
    FROM organization_quotas
    WHERE organization_id = $1 AND period_start <= $2 AND period_end > $2
    ORDER BY period_start DESC
    LIMIT 1
"""

# Row-level locking re-evaluates the WHERE clause against the latest row
# version, so concurrent decrements can never take the counter below zero.
_CONSUME_QUOTA = """
    UPDATE organization_quotas
    SET limits = jsonb_set(limits, $2::text[], to_jsonb((limits #>> $2::text[])::numeric - 1)),
        updated_at = NOW()
    WHERE id = (
        SELECT id FROM organization_quotas
        WHERE organization_id = $1 AND period_start <= $3 AND period_end > $3
        ORDER BY period_start DESC
        LIMIT 1
    )
    AND jsonb_typeof(limits #> $2::text[]) = 'number'
    AND (limits #>> $2::text[])::numeric > 0
    RETURNING (limits #>> $2::text[])::numeric AS remaining
"""

_SELECT_REMAINING = """
    SELECT limits #>> $2::text[] AS remaining
    FROM organization_quotas
    WHERE organization_id = $1 AND period_start <= $3 AND period_end > $3
    ORDER BY period_start DESC
    LIMIT 1
"""


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


def _number(value: Any) -> float:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return coerce_limit(value)


class PostgresEntitlementStore:
    """asyncpg-backed entitlement store."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10,
                 timeout_seconds: float = 2.0,
                 clock: Optional[Callable[[], datetime]] = None):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.timeout_seconds = timeout_seconds
        self._clock = clock or utcnow
        self.logger = get_logger("admission.entitlement_store")
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """Open the pool and make sure the schema exists."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.timeout_seconds,
                init=_init_connection,
            )
            await self._create_tables()
        except _DRIVER_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL entitlement store", error=str(e))
            raise EntitlementStoreError("connect", str(e)) from e

        self.logger.info("PostgreSQL entitlement store started")

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL entitlement store stopped")

    async def ping(self) -> bool:
        try:
            return await self._fetchval("ping", "SELECT 1") == 1
        except EntitlementStoreError:
            return False

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    organization_id VARCHAR(255) NOT NULL,
                    plan_id VARCHAR(255),
                    status VARCHAR(32) NOT NULL DEFAULT 'active',
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS quota_templates (
                    name VARCHAR(255) PRIMARY KEY,
                    template JSONB NOT NULL DEFAULT '{}',
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS organization_quotas (
                    id BIGSERIAL PRIMARY KEY,
                    organization_id VARCHAR(255) NOT NULL,
                    plan_id VARCHAR(255),
                    limits JSONB NOT NULL DEFAULT '{}',
                    period_start TIMESTAMP WITH TIME ZONE NOT NULL,
                    period_end TIMESTAMP WITH TIME ZONE NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    UNIQUE (organization_id, period_end)
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_subscriptions_org ON subscriptions(organization_id, status);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_quotas_org_period
                ON organization_quotas(organization_id, period_start DESC);
            """)

    async def get_active_subscription(self, organization_id: str) -> Optional[SubscriptionRecord]:
        row = await self._fetchrow("get_active_subscription", """
            SELECT organization_id, plan_id, status FROM subscriptions
            WHERE organization_id = $1 AND status = 'active'
            ORDER BY updated_at DESC
            LIMIT 1
        """, organization_id)
        if not row:
            return None
        return SubscriptionRecord(
            organization_id=row["organization_id"],
            plan_id=row["plan_id"],
            status=row["status"],
        )

    async def get_quota_template(self, name: str) -> Optional[QuotaTemplate]:
        row = await self._fetchrow("get_quota_template", """
            SELECT name, template FROM quota_templates WHERE name = $1
        """, name)
        if not row:
            return None
        return QuotaTemplate(name=row["name"], template=row["template"] or {})

    async def get_active_quota(self, organization_id: str,
                               plan_id: Optional[str] = None) -> Optional[QuotaDocument]:
        now = self._clock()
        row = await self._fetchrow("get_active_quota", _SELECT_ACTIVE_QUOTA, organization_id, now)
        if row:
            return self._row_to_quota(row)
        return await self._open_period(organization_id, plan_id, now)

    async def consume_quota(self, organization_id: str, resource: str) -> QuotaConsumption:
        now = self._clock()
        path = resource_path(resource)

        remaining = await self._fetchval("consume_quota", _CONSUME_QUOTA, organization_id, path, now)
        if remaining is not None:
            return QuotaConsumption(consumed=True, remaining=_number(remaining))

        row = await self._fetchrow("consume_quota", _SELECT_REMAINING, organization_id, path, now)
        if not row:
            raise QuotaNotFoundError(organization_id)
        current = coerce_limit(row["remaining"])
        if current is None:
            raise QuotaNotFoundError(organization_id, resource)
        return QuotaConsumption(consumed=False, remaining=current)

    async def _open_period(self, organization_id: str, plan_id: Optional[str],
                           now: datetime) -> Optional[QuotaDocument]:
        if plan_id is None:
            subscription = await self.get_active_subscription(organization_id)
            plan_id = subscription.plan_id if subscription else None
        if not plan_id:
            return None

        template = await self.get_quota_template(plan_id)
        if template is None:
            self.logger.warning("No quota template for plan", plan_id=plan_id)
            return None

        # Concurrent openers agree on period_end, so the unique constraint
        # lets exactly one insert win.
        await self._execute("open_period", """
            INSERT INTO organization_quotas (organization_id, plan_id, limits, period_start, period_end)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (organization_id, period_end) DO NOTHING
        """, organization_id, plan_id, seed_quota_limits(template.template), now, next_month_start(now))

        self.logger.info("Opened quota period", plan_id=plan_id)
        row = await self._fetchrow("get_active_quota", _SELECT_ACTIVE_QUOTA, organization_id, now)
        return self._row_to_quota(row) if row else None

    def _acquire(self):
        if self.pool is None:
            raise EntitlementStoreError("acquire", "store is not connected")
        return self.pool.acquire()

    async def _fetchrow(self, operation: str, query: str, *args):
        try:
            async with self._acquire() as conn:
                return await conn.fetchrow(query, *args, timeout=self.timeout_seconds)
        except _DRIVER_ERRORS as e:
            self.logger.error("Entitlement store query failed", operation=operation, error=str(e))
            raise EntitlementStoreError(operation, str(e)) from e

    async def _fetchval(self, operation: str, query: str, *args):
        try:
            async with self._acquire() as conn:
                return await conn.fetchval(query, *args, timeout=self.timeout_seconds)
        except _DRIVER_ERRORS as e:
            self.logger.error("Entitlement store query failed", operation=operation, error=str(e))
            raise EntitlementStoreError(operation, str(e)) from e

    async def _execute(self, operation: str, query: str, *args):
        try:
            async with self._acquire() as conn:
                return await conn.execute(query, *args, timeout=self.timeout_seconds)
        except _DRIVER_ERRORS as e:
            self.logger.error("Entitlement store query failed", operation=operation, error=str(e))
            raise EntitlementStoreError(operation, str(e)) from e

    def _row_to_quota(self, row) -> QuotaDocument:
        return QuotaDocument(
            organization_id=row["organization_id"],
            plan_id=row["plan_id"],
            limits=row["limits"] or {},
            period_start=row["period_start"],
            period_end=row["period_end"],
        )
