"""Generic row <-> entity mapping.

Each entity declares one ColumnMap: the ordered column list it selects, the
pydantic model rows decode into, and which columns hold JSON text. Type
coercion (ISO timestamps, 0/1 booleans) is left to pydantic.
"""

import json
from enum import Enum
from typing import Any, Generic, Iterable, Mapping, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy.engine import Row

M = TypeVar("M", bound=BaseModel)


class ColumnMap(Generic[M]):
    def __init__(
        self,
        model: type[M],
        columns: Sequence[str],
        fields: Mapping[str, str] | None = None,
        json_columns: Iterable[str] = (),
    ):
        self.model = model
        self.columns = tuple(columns)
        self.fields = dict(fields or {})
        self.json_columns = frozenset(json_columns)

    def select_list(self) -> str:
        return ", ".join(self.columns)

    def field_for(self, column: str) -> str:
        return self.fields.get(column, column)

    def column_for(self, field: str) -> str:
        for column, mapped in self.fields.items():
            if mapped == field:
                return column
        return field

    def decode(self, row: Row) -> M:
        mapping = row._mapping
        data: dict[str, Any] = {}
        for column in self.columns:
            value = mapping[column]
            if column in self.json_columns and isinstance(value, str):
                value = json.loads(value) if value else None
            data[self.field_for(column)] = value
        return self.model.model_validate(data)

    def decode_all(self, rows: Iterable[Row]) -> list[M]:
        return [self.decode(row) for row in rows]

    def encode(self, column: str, value: Any) -> Any:
        """Convert an entity value into its stored column form."""
        if column in self.json_columns and value is not None:
            return json.dumps(value, sort_keys=True, separators=(",", ":"))
        if isinstance(value, Enum):
            return value.value
        return value


def insert_sql(table: str, columns: Sequence[str]) -> str:
    """INSERT with one named placeholder per column."""
    placeholders = ", ".join(f"@{c}" for c in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"


def set_clause(columns: Sequence[str]) -> str:
    return ", ".join(f"{c} = @{c}" for c in columns)
