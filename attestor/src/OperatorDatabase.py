"""OperatorDatabase: Relational persistence for prices, depeg events and tasks.

Backed by SQLAlchemy's async engine, so the same code runs against
PostgreSQL (``postgresql+asyncpg://``) in production and SQLite
(``sqlite+aiosqlite://``) in development and tests.

Every cross-instance guarantee is a storage-layer constraint:
    - price_history: one row per (asset, round_id)
    - depeg_events: at most one unresolved row per asset (partial unique index)
    - tasks: one row per (task_index, operator_address); claiming a task is a
      compare-and-set on its status
    - task_responses: one row per (task_index, operator_address)
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .DepegEvent import DepegEvent
from .PriceReading import PriceReading
from .Task import Task, TaskResponse, TaskStatus

logger = logging.getLogger(__name__)

metadata = MetaData()

price_history = Table(
    "price_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset", String(50), nullable=False),
    Column("price", String(78), nullable=False),
    Column("decimals", Integer, nullable=False),
    Column("updated_at", BigInteger, nullable=False),
    Column("round_id", String(78), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("asset", "round_id", name="uq_price_history_asset_round"),
    Index("idx_price_history_asset_time", "asset", "updated_at"),
)

depeg_events = Table(
    "depeg_events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset", String(50), nullable=False),
    Column("depeg_bps", Integer, nullable=False),
    Column("observed_price", String(78), nullable=False),
    Column("reference_price", String(78), nullable=False),
    Column("reference_asset", String(50), nullable=False),
    Column("decimals", Integer, nullable=False),
    Column("detected_at", BigInteger, nullable=False),
    Column("resolved_at", BigInteger, nullable=True),
    Index(
        "uq_depeg_events_active_asset",
        "asset",
        unique=True,
        sqlite_where=text("resolved_at IS NULL"),
        postgresql_where=text("resolved_at IS NULL"),
    ),
    Index("idx_depeg_events_detected", "detected_at"),
)

tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("task_index", BigInteger, nullable=False),
    Column("operator_address", String(42), nullable=False),
    Column("task_type", Integer, nullable=False),
    Column("task_data", LargeBinary, nullable=False),
    Column("block_number", BigInteger, nullable=False),
    Column("status", String(20), nullable=False, default=TaskStatus.PENDING.value),
    Column("failure_reason", String(64), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("task_index", "operator_address", name="uq_tasks_index_operator"),
    Index("idx_tasks_status", "status"),
)

task_responses = Table(
    "task_responses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("task_index", BigInteger, nullable=False),
    Column("operator_address", String(42), nullable=False),
    Column("response_data", LargeBinary, nullable=False),
    Column("signature", LargeBinary, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint(
        "task_index", "operator_address", name="uq_task_responses_index_operator"
    ),
)

volatility_observations = Table(
    "volatility_observations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset", String(50), nullable=False),
    Column("volatility_bps", BigInteger, nullable=False),
    Column("period_hours", Integer, nullable=False),
    Column("data_points", Integer, nullable=False),
    Column("task_index", BigInteger, nullable=True),
    Column("recorded_at", BigInteger, nullable=False),
    Index("idx_volatility_asset_time", "asset", "recorded_at"),
)


class _ClaimLost(Exception):
    """Raised inside a transaction to roll back a response write."""


def _reading_from_row(row: Any) -> PriceReading:
    return PriceReading(
        asset=row["asset"],
        raw_value=int(row["price"]),
        decimals=row["decimals"],
        updated_at=row["updated_at"],
        round_id=int(row["round_id"]),
    )


def _event_from_row(row: Any) -> DepegEvent:
    return DepegEvent(
        asset=row["asset"],
        depeg_bps=row["depeg_bps"],
        observed_price=int(row["observed_price"]),
        reference_price=int(row["reference_price"]),
        reference_asset=row["reference_asset"],
        decimals=row["decimals"],
        detected_at=row["detected_at"],
        resolved_at=row["resolved_at"],
        id=row["id"],
    )


class OperatorDatabase:
    """Async relational store used by the operator pipeline.

    :ivar url: SQLAlchemy database URL.
    :ivar engine: Async engine, available after connect().
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        """Initialize the database wrapper.

        :param url: SQLAlchemy async URL (e.g., "postgresql+asyncpg://...").
        :param echo: Log emitted SQL (default: False).
        """
        self.url = url
        self.echo = echo
        self.engine: AsyncEngine | None = None

    async def connect(self) -> None:
        """Create the engine and ensure the schema exists.

        :raises sqlalchemy.exc.OperationalError: If the database is unreachable.
        """
        engine = create_async_engine(self.url, echo=self.echo, pool_pre_ping=True)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        except Exception:
            await engine.dispose()
            raise
        self.engine = engine
        logger.info(f"Database connected ({engine.dialect.name})")

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None

    def _engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("OperatorDatabase.connect() has not been called")
        return self.engine

    def _insert_ignore(self, table: Table):
        """Build an INSERT that silently skips rows violating a unique constraint."""
        dialect = self._engine().dialect.name
        if dialect == "postgresql":
            return pg_insert(table).on_conflict_do_nothing()
        if dialect == "sqlite":
            return sqlite_insert(table).on_conflict_do_nothing()
        raise RuntimeError(f"Unsupported database dialect: {dialect}")

    # Price history

    async def append_price(self, reading: PriceReading) -> bool:
        """Append a reading to the price history.

        :param reading: Reading to store.
        :returns: True if a row was written, False if (asset, round) exists.
        """
        stmt = self._insert_ignore(price_history).values(
            asset=reading.asset,
            price=str(reading.raw_value),
            decimals=reading.decimals,
            updated_at=reading.updated_at,
            round_id=str(reading.round_id),
        )
        async with self._engine().begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount == 1

    async def latest_price(self, asset: str) -> PriceReading | None:
        stmt = (
            select(price_history)
            .where(price_history.c.asset == asset)
            .order_by(price_history.c.updated_at.desc(), price_history.c.id.desc())
            .limit(1)
        )
        async with self._engine().connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return _reading_from_row(row) if row else None

    async def price_window(self, asset: str, since: int) -> list[PriceReading]:
        """Return readings updated strictly after ``since``, oldest first."""
        stmt = (
            select(price_history)
            .where(price_history.c.asset == asset, price_history.c.updated_at > since)
            .order_by(price_history.c.updated_at.asc(), price_history.c.id.asc())
        )
        async with self._engine().connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [_reading_from_row(row) for row in rows]

    async def count_prices(self, asset: str) -> int:
        stmt = select(func.count()).select_from(price_history).where(
            price_history.c.asset == asset
        )
        async with self._engine().connect() as conn:
            return (await conn.execute(stmt)).scalar_one()

    # Depeg events

    async def insert_depeg_event(self, event: DepegEvent) -> bool:
        """Insert a new active depeg event.

        :param event: Event to insert.
        :returns: True if inserted, False if the asset already has an
            active event.
        """
        stmt = self._insert_ignore(depeg_events).values(
            asset=event.asset,
            depeg_bps=event.depeg_bps,
            observed_price=str(event.observed_price),
            reference_price=str(event.reference_price),
            reference_asset=event.reference_asset,
            decimals=event.decimals,
            detected_at=event.detected_at,
            resolved_at=None,
        )
        async with self._engine().begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount == 1

    async def active_depeg_events(self, asset: str | None = None) -> list[DepegEvent]:
        """Return unresolved depeg events, most recent first.

        :param asset: Restrict to one asset; None returns all assets.
        """
        stmt = select(depeg_events).where(depeg_events.c.resolved_at.is_(None))
        if asset is not None:
            stmt = stmt.where(depeg_events.c.asset == asset)
        stmt = stmt.order_by(depeg_events.c.detected_at.desc(), depeg_events.c.id.desc())
        async with self._engine().connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [_event_from_row(row) for row in rows]

    async def all_depeg_events(self, asset: str) -> list[DepegEvent]:
        stmt = (
            select(depeg_events)
            .where(depeg_events.c.asset == asset)
            .order_by(depeg_events.c.id.asc())
        )
        async with self._engine().connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [_event_from_row(row) for row in rows]

    async def resolve_depeg_event(self, asset: str, resolved_at: int) -> bool:
        """Mark the active event of an asset as resolved.

        Only an unresolved event is touched, so resolved_at is written once.

        :returns: True if an active event was resolved.
        """
        stmt = (
            update(depeg_events)
            .where(depeg_events.c.asset == asset, depeg_events.c.resolved_at.is_(None))
            .values(resolved_at=resolved_at)
        )
        async with self._engine().begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount > 0

    # Tasks

    async def record_task(self, task: Task, operator: str) -> bool:
        """Record a task as pending for this operator.

        :returns: True if this is the first time the task was seen.
        """
        stmt = self._insert_ignore(tasks).values(
            task_index=task.task_index,
            operator_address=operator,
            task_type=task.task_type,
            task_data=task.task_data,
            block_number=task.block_number,
            status=TaskStatus.PENDING.value,
        )
        async with self._engine().begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount == 1

    async def _transition(
        self,
        task_index: int,
        operator: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        failure_reason: str | None = None,
    ) -> bool:
        stmt = (
            update(tasks)
            .where(
                tasks.c.task_index == task_index,
                tasks.c.operator_address == operator,
                tasks.c.status == from_status.value,
            )
            .values(status=to_status.value, failure_reason=failure_reason, updated_at=func.now())
        )
        async with self._engine().begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount == 1

    async def claim_task(self, task_index: int, operator: str) -> bool:
        """Move a task from pending to dispatching.

        Exactly one of any number of concurrent callers gets True.
        """
        return await self._transition(
            task_index, operator, TaskStatus.PENDING, TaskStatus.DISPATCHING
        )

    async def fail_task(self, task_index: int, operator: str, reason: str) -> bool:
        """Move a dispatching task to failed with the given reason."""
        return await self._transition(
            task_index, operator, TaskStatus.DISPATCHING, TaskStatus.FAILED, reason
        )

    async def complete_task(self, response: TaskResponse) -> bool:
        """Store a response and mark its task responded, atomically.

        :returns: False if a response already exists or the task is no
            longer dispatching; nothing is written in that case.
        """
        try:
            async with self._engine().begin() as conn:
                await conn.execute(
                    insert(task_responses).values(
                        task_index=response.task_index,
                        operator_address=response.operator,
                        response_data=response.payload,
                        signature=response.signature,
                    )
                )
                result = await conn.execute(
                    update(tasks)
                    .where(
                        tasks.c.task_index == response.task_index,
                        tasks.c.operator_address == response.operator,
                        tasks.c.status == TaskStatus.DISPATCHING.value,
                    )
                    .values(status=TaskStatus.RESPONDED.value, updated_at=func.now())
                )
                if result.rowcount != 1:
                    raise _ClaimLost()
        except (IntegrityError, _ClaimLost):
            return False
        return True

    async def get_task_status(self, task_index: int, operator: str) -> TaskStatus | None:
        stmt = select(tasks.c.status).where(
            tasks.c.task_index == task_index, tasks.c.operator_address == operator
        )
        async with self._engine().connect() as conn:
            status = (await conn.execute(stmt)).scalar_one_or_none()
        return TaskStatus(status) if status is not None else None

    async def get_failure_reason(self, task_index: int, operator: str) -> str | None:
        stmt = select(tasks.c.failure_reason).where(
            tasks.c.task_index == task_index, tasks.c.operator_address == operator
        )
        async with self._engine().connect() as conn:
            return (await conn.execute(stmt)).scalar_one_or_none()

    async def get_responses(self, task_index: int) -> list[TaskResponse]:
        """Return every stored response for a task, across operators."""
        stmt = (
            select(task_responses)
            .where(task_responses.c.task_index == task_index)
            .order_by(task_responses.c.id.asc())
        )
        async with self._engine().connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [
            TaskResponse(
                task_index=row["task_index"],
                operator=row["operator_address"],
                payload=bytes(row["response_data"]),
                signature=bytes(row["signature"]),
            )
            for row in rows
        ]

    async def non_terminal_tasks(self, operator: str) -> list[tuple[Task, TaskStatus]]:
        """Return this operator's tasks that are pending or dispatching."""
        stmt = (
            select(tasks)
            .where(
                tasks.c.operator_address == operator,
                tasks.c.status.in_(
                    [TaskStatus.PENDING.value, TaskStatus.DISPATCHING.value]
                ),
            )
            .order_by(tasks.c.task_index.asc())
        )
        async with self._engine().connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [
            (
                Task(
                    task_index=row["task_index"],
                    task_type=row["task_type"],
                    task_data=bytes(row["task_data"]),
                    block_number=row["block_number"],
                ),
                TaskStatus(row["status"]),
            )
            for row in rows
        ]

    # Volatility observations

    async def record_volatility(
        self,
        asset: str,
        volatility_bps: int,
        period_hours: int,
        data_points: int,
        recorded_at: int,
        task_index: int | None = None,
    ) -> None:
        async with self._engine().begin() as conn:
            await conn.execute(
                insert(volatility_observations).values(
                    asset=asset,
                    volatility_bps=volatility_bps,
                    period_hours=period_hours,
                    data_points=data_points,
                    task_index=task_index,
                    recorded_at=recorded_at,
                )
            )

    async def latest_volatility(self, asset: str) -> int | None:
        stmt = (
            select(volatility_observations.c.volatility_bps)
            .where(volatility_observations.c.asset == asset)
            .order_by(
                volatility_observations.c.recorded_at.desc(),
                volatility_observations.c.id.desc(),
            )
            .limit(1)
        )
        async with self._engine().connect() as conn:
            return (await conn.execute(stmt)).scalar_one_or_none()
