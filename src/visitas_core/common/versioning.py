"""Optimistic concurrency for mutable clinical entities.

A writer passes the version it last read. The update is a single
``UPDATE ... WHERE id = @id AND version = @expected_version`` that also
bumps the version by one, so a writer that interleaves between our read and
our write makes the statement match zero rows and the caller gets a
ConflictError instead of silently overwriting.
"""

from datetime import datetime
from typing import Any, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel

from visitas_core.common.exceptions import ConflictError, NotFoundError, ValidationError
from visitas_core.common.logging import get_logger
from visitas_core.common.models import generate_uuid, utcnow
from visitas_core.common.rows import ColumnMap, insert_sql, set_clause
from visitas_core.common.statements import and_where
from visitas_core.common.store import RowStore

logger = get_logger("versioning")

INITIAL_VERSION = 1

VERSIONED_COLUMNS = (
    "version",
    "created_at", "created_by", "updated_at", "updated_by",
    "deleted", "deleted_at", "deleted_by",
)


class VersionedEntity(BaseModel):
    version: int = INITIAL_VERSION
    created_at: datetime
    created_by: str = ""
    updated_at: datetime
    updated_by: Optional[str] = None
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None


E = TypeVar("E", bound=VersionedEntity)
P = TypeVar("P", bound=BaseModel)


class VersionedRepository(Generic[E, P]):
    """Base for repositories of version-stamped, soft-deletable rows.

    Subclasses set ``table``, ``id_column`` and ``columns``. Rows are
    scoped by ``subject_column`` when a subject id is passed.
    """

    table: str
    id_column: str
    columns: ColumnMap[E]
    subject_column = "patient_id"
    max_limit = 500

    def __init__(
        self,
        store: RowStore,
        id_factory: Callable[[], str] = generate_uuid,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.id_factory = id_factory
        self.clock = clock

    @property
    def entity_name(self) -> str:
        return self.columns.model.__name__

    # ── Write ──

    async def _insert(self, entity: E) -> E:
        values = {
            column: self.columns.encode(column, getattr(entity, self.columns.field_for(column)))
            for column in self.columns.columns
        }
        await self.store.execute(
            insert_sql(self.table, self.columns.columns), values,
            operation=f"{self.table}.create",
        )
        return entity

    async def update_with_version(
        self,
        entity_id: str,
        expected_version: int,
        patch: P,
        actor: str,
        subject_id: str | None = None,
    ) -> E:
        """Apply the fields present in ``patch`` if the stored version still matches.

        Raises NotFoundError when the entity is missing or soft-deleted and
        ConflictError when ``expected_version`` is stale.
        """
        current = await self._fetch_live(entity_id, subject_id)
        if current.version != expected_version:
            logger.info(
                "Version conflict",
                extra={"fields": {
                    "entity": self.entity_name,
                    "entity_id": entity_id,
                    "expected_version": expected_version,
                    "actual_version": current.version,
                }},
            )
            raise ConflictError(
                expected_version=expected_version, actual_version=current.version,
            )

        changes = patch.model_dump(exclude_unset=True)
        if not changes:
            return current

        now = self.clock()
        changes["updated_at"] = now
        changes["updated_by"] = actor
        next_version = expected_version + 1

        values = {}
        for field, value in changes.items():
            column = self.columns.column_for(field)
            if column not in self.columns.columns or column in (self.id_column, "version"):
                raise ValidationError(f"{field} cannot be updated")
            values[column] = self.columns.encode(column, value)

        count = await self.store.execute(
            f"UPDATE {self.table} SET {set_clause(list(values))}, version = @next_version "
            f"WHERE {self.id_column} = @entity_id AND version = @expected_version "
            "AND deleted = false",
            {
                **values,
                "next_version": next_version,
                "expected_version": expected_version,
                "entity_id": entity_id,
            },
            operation=f"{self.table}.update_with_version",
        )
        if count == 0:
            # Another writer committed between our read and our write.
            logger.info(
                "Version conflict at write",
                extra={"fields": {
                    "entity": self.entity_name,
                    "entity_id": entity_id,
                    "expected_version": expected_version,
                }},
            )
            raise ConflictError(
                f"{self.entity_name} {entity_id} was modified concurrently; "
                f"version {expected_version} is no longer current",
                expected_version=expected_version,
            )

        return current.model_copy(update={**changes, "version": next_version})

    async def soft_delete(
        self, entity_id: str, actor: str, subject_id: str | None = None,
    ) -> None:
        """Flag as deleted. The version is left as it was."""
        await self._fetch_live(entity_id, subject_id)
        now = self.clock()
        count = await self.store.execute(
            f"UPDATE {self.table} SET deleted = true, deleted_at = @now, "
            "deleted_by = @actor, updated_at = @now, updated_by = @actor "
            f"WHERE {self.id_column} = @entity_id AND deleted = false",
            {"now": now, "actor": actor, "entity_id": entity_id},
            operation=f"{self.table}.delete",
        )
        if count == 0:
            raise NotFoundError(f"{self.entity_name} not found")

    # ── Read ──

    async def _fetch_live(self, entity_id: str, subject_id: str | None = None) -> E:
        conditions = [f"{self.id_column} = @entity_id", "deleted = false"]
        params: dict[str, Any] = {"entity_id": entity_id}
        if subject_id is not None:
            conditions.append(f"{self.subject_column} = @subject_id")
            params["subject_id"] = subject_id
        row = await self.store.fetch_one(
            f"SELECT {self.columns.select_list()} FROM {self.table} {and_where(conditions)}",
            params,
            operation=f"{self.table}.get",
        )
        if row is None:
            raise NotFoundError(f"{self.entity_name} not found")
        return self.columns.decode(row)

    async def _select(
        self,
        conditions: list[str],
        params: dict[str, Any],
        order_by: str,
        limit: int,
        offset: int,
    ) -> list[E]:
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        rows = await self.store.fetch_all(
            f"SELECT {self.columns.select_list()} FROM {self.table} "
            f"{and_where(['deleted = false', *conditions])} "
            f"ORDER BY {order_by} LIMIT @limit OFFSET @offset",
            {**params, "limit": min(limit, self.max_limit), "offset": offset},
            operation=f"{self.table}.list",
        )
        return self.columns.decode_all(rows)
