"""Async engine, transaction scopes, and startup database checks."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import ColumnElement, event, func, select, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from recipe_automation.config import get_settings
from recipe_automation.models import AutomationSchedule, Base, PipelineRun, RunStatus

SessionScopeFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_POOL_SIZE = 5
DEFAULT_MAX_OVERFLOW = 10
SQLITE_BUSY_TIMEOUT_SECONDS = 30
SQLITE_PRAGMAS = ("PRAGMA journal_mode=WAL;", "PRAGMA foreign_keys=ON;")

_database_health_logger = logging.getLogger("recipe_automation.database.health")

# Rows that violate run bookkeeping; each should count zero.
RUN_CONSISTENCY_CHECKS: dict[str, ColumnElement[bool]] = {
    "terminal_runs_without_completion": (
        (PipelineRun.status != RunStatus.RUNNING) & PipelineRun.completed_at.is_(None)
    ),
    "running_runs_with_completion": (
        (PipelineRun.status == RunStatus.RUNNING)
        & PipelineRun.completed_at.is_not(None)
    ),
    "successful_runs_with_error": (
        (PipelineRun.status == RunStatus.SUCCESS) & PipelineRun.error.is_not(None)
    ),
}


@dataclass(slots=True, frozen=True)
class DatabaseHealthCheckResult:
    """Outcome of the integrity and run bookkeeping checks run at startup."""

    integrity_ok: bool
    inconsistency_counts: dict[str, int]

    @property
    def inconsistent_rows(self) -> int:
        return sum(self.inconsistency_counts.values())

    @property
    def is_healthy(self) -> bool:
        return self.integrity_ok and self.inconsistent_rows == 0


def _sqlite_file(url: URL) -> Path | None:
    database = url.database
    if url.get_backend_name() != "sqlite" or not database:
        return None
    if database == ":memory:" or database.startswith("file:"):
        return None

    path = Path(database)
    return path if path.is_absolute() else Path.cwd() / path


def build_engine(database_url: str) -> AsyncEngine:
    """Create the pooled async engine; SQLite files are created on demand."""

    url = make_url(database_url)
    is_sqlite = url.get_backend_name() == "sqlite"

    sqlite_file = _sqlite_file(url)
    if sqlite_file is not None:
        sqlite_file.parent.mkdir(parents=True, exist_ok=True)
        sqlite_file.touch(exist_ok=True)

    async_engine = create_async_engine(
        url,
        poolclass=AsyncAdaptedQueuePool,
        pool_pre_ping=True,
        pool_size=DEFAULT_POOL_SIZE,
        max_overflow=DEFAULT_MAX_OVERFLOW,
        connect_args={"timeout": SQLITE_BUSY_TIMEOUT_SECONDS} if is_sqlite else {},
    )

    if is_sqlite:

        @event.listens_for(async_engine.sync_engine, "connect")
        def apply_sqlite_pragmas(dbapi_connection: Any, _: Any) -> None:
            cursor = dbapi_connection.cursor()
            for pragma in SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()

    return async_engine


def scoped_session_factory(
    session_maker: async_sessionmaker[AsyncSession],
) -> SessionScopeFactory:
    """Wrap a sessionmaker so each scope commits on success, else rolls back."""

    @asynccontextmanager
    async def scope() -> AsyncIterator[AsyncSession]:
        session = session_maker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return scope


engine = build_engine(get_settings().DATABASE_URL)

AsyncSessionFactory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False,
)

session_scope = scoped_session_factory(AsyncSessionFactory)


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that provides an async database session."""

    async with session_scope() as session:
        yield session


async def initialize_database() -> None:
    """Create known tables; SQLite databases must come up in WAL mode."""

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

        if connection.dialect.name != "sqlite":
            return

        journal_mode = (
            await connection.execute(text("PRAGMA journal_mode;"))
        ).scalar_one()
        if str(journal_mode).lower() != "wal":
            raise RuntimeError(
                f"SQLite WAL mode was not enabled. Current mode: {journal_mode}"
            )


async def run_startup_database_health_check(
    *,
    fail_fast_on_integrity_error: bool = True,
) -> DatabaseHealthCheckResult:
    """Check storage integrity and that run rows agree with their status."""

    integrity_ok = True
    async with AsyncSessionFactory() as session:
        if engine.dialect.name == "sqlite":
            integrity_rows = list(
                (await session.execute(text("PRAGMA integrity_check;"))).scalars()
            )
            integrity_ok = integrity_rows == ["ok"]
            if not integrity_ok:
                _database_health_logger.error(
                    "database_integrity_check_failed",
                    extra={"integrity_rows": integrity_rows},
                )

        inconsistency_counts = {
            name: int(
                await session.scalar(
                    select(func.count(PipelineRun.id)).where(condition)
                )
                or 0
            )
            for name, condition in RUN_CONSISTENCY_CHECKS.items()
        }
        inconsistency_counts["schedules_with_negative_run_count"] = int(
            await session.scalar(
                select(func.count(AutomationSchedule.id)).where(
                    AutomationSchedule.run_count < 0
                )
            )
            or 0
        )

    result = DatabaseHealthCheckResult(
        integrity_ok=integrity_ok,
        inconsistency_counts=inconsistency_counts,
    )
    if result.inconsistent_rows:
        _database_health_logger.warning(
            "database_inconsistent_rows_detected",
            extra={
                "inconsistency_counts": inconsistency_counts,
                "inconsistent_rows": result.inconsistent_rows,
            },
        )
    _database_health_logger.info(
        "database_startup_health_check_completed",
        extra={
            "integrity_ok": result.integrity_ok,
            "inconsistent_rows": result.inconsistent_rows,
            "healthy": result.is_healthy,
        },
    )

    if fail_fast_on_integrity_error and not result.integrity_ok:
        raise RuntimeError(
            "Database integrity check failed. Review logs before restarting."
        )

    return result


async def close_database() -> None:
    """Dispose database engine and release pooled connections."""

    await engine.dispose()


__all__ = [
    "AsyncSessionFactory",
    "DatabaseHealthCheckResult",
    "SessionScopeFactory",
    "build_engine",
    "close_database",
    "engine",
    "get_db_session",
    "initialize_database",
    "run_startup_database_health_check",
    "scoped_session_factory",
    "session_scope",
]
