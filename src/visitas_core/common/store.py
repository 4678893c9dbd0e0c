"""Row store: executes built statements against the database.

Every call builds its statement through the injected StatementBuilder,
runs under the configured deadline and converts driver failures into the
Visitas error taxonomy. ``fetch_one`` returning ``None`` is the not-found
signal; a connection or dialect problem always raises.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Sequence

from sqlalchemy.engine import CursorResult, Row
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from visitas_core.common.database import DatabaseManager
from visitas_core.common.exceptions import DependencyUnavailableError, ValidationError
from visitas_core.common.logging import get_logger
from visitas_core.common.statements import Statement, StatementBuilder

logger = get_logger("store")


class RowStore:
    """Thin execution layer over an async SQLAlchemy engine."""

    def __init__(
        self,
        db: DatabaseManager,
        builder: StatementBuilder,
        timeout: float = 10.0,
    ):
        self.db = db
        self.builder = builder
        self.timeout = timeout

    # ── Primitives ──

    async def fetch_one(
        self, sql: str, params: dict[str, Any] | None = None,
        tx: AsyncConnection | None = None, operation: str = "fetch_one",
    ) -> Row | None:
        return await self._call(operation, sql, params, tx, lambda r: r.fetchone())

    async def fetch_all(
        self, sql: str, params: dict[str, Any] | None = None,
        tx: AsyncConnection | None = None, operation: str = "fetch_all",
    ) -> Sequence[Row]:
        return await self._call(operation, sql, params, tx, lambda r: r.fetchall())

    async def fetch_value(
        self, sql: str, params: dict[str, Any] | None = None,
        tx: AsyncConnection | None = None, operation: str = "fetch_value",
    ) -> Any:
        return await self._call(operation, sql, params, tx, lambda r: r.scalar())

    async def execute(
        self, sql: str, params: dict[str, Any] | None = None,
        tx: AsyncConnection | None = None, operation: str = "execute",
    ) -> int:
        """Run a single mutation; returns the affected row count."""
        return await self._call(operation, sql, params, tx, lambda r: r.rowcount)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection, None]:
        """Run several statements in one store transaction.

        Pass the yielded connection as ``tx`` to every call that belongs to it.
        """
        try:
            async with self.db.require_engine().begin() as conn:
                yield conn
        except DBAPIError as exc:
            raise DependencyUnavailableError(
                f"transaction: commit failed ({type(exc.orig).__name__})",
                dependency="store",
            ) from exc

    # ── Internal helpers ──

    async def _call(
        self,
        operation: str,
        sql: str,
        params: dict[str, Any] | None,
        tx: AsyncConnection | None,
        consume: Callable[[CursorResult], Any],
    ) -> Any:
        statement = self.builder.build(sql, params)
        try:
            return await asyncio.wait_for(
                self._dispatch(statement, tx, consume), self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error(
                "Store call exceeded deadline",
                extra={"fields": {"operation": operation, "timeout": self.timeout}},
            )
            raise DependencyUnavailableError(
                f"{operation}: store call exceeded {self.timeout}s deadline",
                dependency="store",
            ) from exc
        except IntegrityError as exc:
            raise ValidationError(
                f"{operation}: store constraint violated ({type(exc.orig).__name__})"
            ) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "Store call failed",
                extra={"fields": {"operation": operation, "error": type(exc).__name__}},
            )
            raise DependencyUnavailableError(
                f"{operation}: store call failed ({type(exc).__name__})",
                dependency="store",
            ) from exc

    async def _dispatch(
        self,
        statement: Statement,
        tx: AsyncConnection | None,
        consume: Callable[[CursorResult], Any],
    ) -> Any:
        params = self._driver_params(statement)
        if tx is not None:
            result = await tx.exec_driver_sql(statement.sql, params)
            return consume(result)
        async with self.db.require_engine().begin() as conn:
            result = await conn.exec_driver_sql(statement.sql, params)
            return consume(result)

    def _driver_params(self, statement: Statement) -> dict[str, Any] | tuple | None:
        if not statement.params:
            return None
        if self.builder.dialect.positional:
            ordered = sorted(statement.params.items(), key=lambda kv: int(kv[0][1:]))
            return tuple(value for _, value in ordered)
        return statement.params
