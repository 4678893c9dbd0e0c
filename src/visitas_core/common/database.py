"""Async database manager for Visitas-Core (single-DB)."""

import sqlite3
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from visitas_core.common.config import VisitasSettings, get_settings
from visitas_core.common.models import Base

# Import all model modules so Base.metadata is complete for create_all().
import visitas_core.audit.models  # noqa: F401
import visitas_core.identifiers.models  # noqa: F401
import visitas_core.records.models  # noqa: F401
import visitas_core.orders.models  # noqa: F401


def _adapt_datetime(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 so stored timestamps sort as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# Process-wide: raw statements bypass SQLAlchemy type processing, so every
# sqlite3 connection in this process stores datetimes through this adapter.
sqlite3.register_adapter(datetime, _adapt_datetime)


class DatabaseManager:
    """Manages a single async database engine."""

    def __init__(self, settings: VisitasSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None

    @property
    def is_sqlite(self) -> bool:
        return self._settings.db_url.startswith("sqlite")

    async def init(self) -> None:
        self.engine = create_async_engine(self._settings.db_url, echo=False)

    def require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized - call init() first")
        return self.engine

    async def create_all(self) -> None:
        async with self.require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            self.engine = None
