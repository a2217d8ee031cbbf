"""PostgreSQL repository for order persistence.

This module implements the OrderRepository protocol using asyncpg for
async PostgreSQL access. It provides:
- Connection pooling for production use
- Atomic transactions covering an order row and all of its stage rows
- Optimistic locking via the version column
- Business-key uniqueness enforced by the order_number constraint

Source:
- migrations/001_workflow_orders.sql (schema definition)
- migrations/002_stage_checklists.sql (checklist column)
- src/workflow/state/machine.py (OrderRepository protocol)
"""

import json
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import asyncpg
import structlog

from src.workflow.state.errors import (
    DatabaseError,
    DuplicateOrderError,
    NotFoundError,
    VersionConflictError,
)
from src.workflow.state.models import Order, StageStatus
from src.workflow.state.policy import StageKind, StageState


logger = structlog.get_logger()


_ORDER_COLUMNS = "id, order_number, priority, notes, created_at, updated_at, version"

_STAGE_COLUMNS = (
    "id, order_id, stage, state, assignee, claimed_at, started_at, completed_at, "
    "service_time_minutes, notes, exception_reason, supervisor_notes, approved_by, "
    "checklist, updated_at"
)

_UPSERT_STAGE = """
    INSERT INTO order_stage_statuses (
        order_id,
        stage,
        state,
        assignee,
        claimed_at,
        started_at,
        completed_at,
        service_time_minutes,
        notes,
        exception_reason,
        supervisor_notes,
        approved_by,
        updated_at,
        checklist
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
    ON CONFLICT (order_id, stage) DO UPDATE SET
        state = EXCLUDED.state,
        assignee = EXCLUDED.assignee,
        claimed_at = EXCLUDED.claimed_at,
        started_at = EXCLUDED.started_at,
        completed_at = EXCLUDED.completed_at,
        service_time_minutes = EXCLUDED.service_time_minutes,
        notes = EXCLUDED.notes,
        exception_reason = EXCLUDED.exception_reason,
        supervisor_notes = EXCLUDED.supervisor_notes,
        approved_by = EXCLUDED.approved_by,
        updated_at = EXCLUDED.updated_at,
        checklist = EXCLUDED.checklist
    RETURNING id
"""


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PostgresOrderRepository:
    """PostgreSQL implementation of the OrderRepository protocol.

    The repository expects the schema from the migrations/ directory to be
    applied before use. Stage checklists are stored as JSONB.

    Example:
        >>> async with PostgresOrderRepository("postgresql://...") as repo:
        ...     order = await repo.find_by_order_number("PO-1001")
    """

    def __init__(
        self,
        connection_string: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.connection_string = connection_string
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: Optional[asyncpg.Pool] = None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool, raising if not connected.

        Raises:
            DatabaseError: If the pool is not initialized.
        """
        if self._pool is None:
            raise DatabaseError(
                "Database pool not initialized. Call connect() first."
            )
        return self._pool

    async def connect(self) -> None:
        """Initialize the connection pool.

        Raises:
            DatabaseError: If connection fails.
        """
        if self._pool is not None:
            logger.warning("Connection pool already initialized")
            return

        try:
            logger.info(
                "Connecting to PostgreSQL",
                min_pool_size=self.min_pool_size,
                max_pool_size=self.max_pool_size,
            )
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
            )
            logger.info("PostgreSQL connection pool established")
        except Exception as e:
            logger.error("Failed to connect to PostgreSQL", error=str(e))
            raise DatabaseError(
                f"Failed to connect to PostgreSQL: {e}",
                original_error=e,
            ) from e

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info("Closing PostgreSQL connection pool")
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> "PostgresOrderRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection with an active transaction.

        A cancelled or failed block rolls the whole transaction back.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    @asynccontextmanager
    async def _snapshot(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a read-only REPEATABLE READ transaction.

        Every query in the block sees the same snapshot, so an order row and
        its stage rows always come from the same committed save.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                yield conn

    async def find_by_id(self, order_id: int) -> Optional[Order]:
        return await self._find_one("id", order_id)

    async def find_by_order_number(self, order_number: str) -> Optional[Order]:
        return await self._find_one("order_number", order_number)

    async def find_all(self) -> List[Order]:
        try:
            async with self._snapshot() as conn:
                rows = await conn.fetch(
                    f"SELECT {_ORDER_COLUMNS} FROM workflow_orders ORDER BY id ASC"
                )
                stage_rows = await conn.fetch(
                    f"SELECT {_STAGE_COLUMNS} FROM order_stage_statuses"
                )
        except Exception as e:
            logger.error("Failed to list orders", error=str(e))
            raise DatabaseError(f"Failed to list orders: {e}", original_error=e) from e

        stages_by_order: Dict[int, List[Any]] = defaultdict(list)
        for stage_row in stage_rows:
            stages_by_order[stage_row["order_id"]].append(stage_row)

        orders = [self._to_order(row, stages_by_order[row["id"]]) for row in rows]
        logger.debug("Listed orders", count=len(orders))
        return orders

    async def save(self, order: Order) -> Order:
        """Insert a new order or update an existing one.

        Raises:
            DuplicateOrderError: If the order number is already taken.
            VersionConflictError: If another writer updated the order first.
            NotFoundError: If updating an order that no longer exists.
            DatabaseError: If the operation fails for any other reason.
        """
        try:
            async with self._transaction() as conn:
                if order.id is None:
                    order_id = await conn.fetchval(
                        """
                        INSERT INTO workflow_orders (
                            order_number,
                            priority,
                            notes,
                            created_at,
                            updated_at,
                            version
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                        RETURNING id
                        """,
                        order.order_number,
                        order.priority,
                        order.notes,
                        order.created_at,
                        order.updated_at,
                        order.version,
                    )
                else:
                    order_id = order.id
                    await self._update_order_row(conn, order)

                saved = order.model_copy(deep=True)
                saved.id = order_id
                for status in saved.statuses:
                    status.id = await conn.fetchval(
                        _UPSERT_STAGE,
                        order_id,
                        status.stage.value,
                        status.state.value,
                        status.assignee,
                        status.claimed_at,
                        status.started_at,
                        status.completed_at,
                        status.service_time_minutes,
                        status.notes,
                        status.exception_reason,
                        status.supervisor_notes,
                        status.approved_by,
                        status.updated_at,
                        json.dumps([item.model_dump() for item in status.checklist]),
                    )

            logger.info(
                "Saved order",
                order_id=saved.id,
                order_number=saved.order_number,
                version=saved.version,
            )
            return saved

        except asyncpg.UniqueViolationError as e:
            logger.warning("Order number already exists", order_number=order.order_number)
            raise DuplicateOrderError(order.order_number) from e
        except (VersionConflictError, NotFoundError):
            raise
        except Exception as e:
            logger.error(
                "Failed to save order",
                order_number=order.order_number,
                error=str(e),
            )
            raise DatabaseError(f"Failed to save order: {e}", original_error=e) from e

    async def _update_order_row(self, conn: asyncpg.Connection, order: Order) -> None:
        expected_version = order.version - 1
        result = await conn.execute(
            """
            UPDATE workflow_orders
            SET
                priority = $2,
                notes = $3,
                updated_at = $4,
                version = $5
            WHERE id = $1 AND version = $6
            """,
            order.id,
            order.priority,
            order.notes,
            order.updated_at,
            order.version,
            expected_version,
        )

        rows_affected = int(result.split()[-1])
        if rows_affected == 0:
            actual = await conn.fetchval(
                "SELECT version FROM workflow_orders WHERE id = $1",
                order.id,
            )
            if actual is None:
                raise NotFoundError("order", order.id)
            logger.warning(
                "Version conflict during order update",
                order_id=order.id,
                expected_version=expected_version,
                actual_version=actual,
            )
            raise VersionConflictError(order.id, expected_version, actual)

    async def health_check(self) -> bool:
        """Check that the database responds to a trivial query."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.warning("Database health check failed", error=str(e))
            return False

    async def _find_one(self, column: str, value: Any) -> Optional[Order]:
        try:
            async with self._snapshot() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_ORDER_COLUMNS} FROM workflow_orders WHERE {column} = $1",
                    value,
                )
                if row is None:
                    return None
                stage_rows = await conn.fetch(
                    f"SELECT {_STAGE_COLUMNS} FROM order_stage_statuses WHERE order_id = $1",
                    row["id"],
                )
        except Exception as e:
            logger.error("Failed to get order", column=column, error=str(e))
            raise DatabaseError(f"Failed to get order: {e}", original_error=e) from e

        return self._to_order(row, stage_rows)

    @staticmethod
    def _to_order(row: Any, stage_rows: Iterable[Any]) -> Order:
        return Order(
            id=row["id"],
            order_number=row["order_number"],
            priority=row["priority"],
            notes=row["notes"],
            created_at=_utc(row["created_at"]),
            updated_at=_utc(row["updated_at"]),
            version=row["version"],
            statuses=[
                StageStatus(
                    id=sr["id"],
                    stage=StageKind(sr["stage"]),
                    state=StageState(sr["state"]),
                    assignee=sr["assignee"],
                    claimed_at=_utc(sr["claimed_at"]),
                    started_at=_utc(sr["started_at"]),
                    completed_at=_utc(sr["completed_at"]),
                    service_time_minutes=sr["service_time_minutes"],
                    notes=sr["notes"],
                    exception_reason=sr["exception_reason"],
                    supervisor_notes=sr["supervisor_notes"],
                    approved_by=sr["approved_by"],
                    checklist=json.loads(sr["checklist"]) if sr["checklist"] else [],
                    updated_at=_utc(sr["updated_at"]),
                )
                for sr in stage_rows
            ],
        )
