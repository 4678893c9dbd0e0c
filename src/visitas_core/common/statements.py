"""Dialect-portable parameterized statements.

Repositories author every query once, in Google SQL form with ``@name``
placeholders. The builder rewrites it for the dialect the store actually
speaks:

- ``googlesql`` binds named placeholders natively, so queries pass through.
- ``postgresql`` binds positionally: ``WHERE a = @a`` becomes ``WHERE a = $1``
  and the parameter map is rekeyed to ``{"p1": ...}``.

Positions are assigned over the *sorted set* of distinct names, so the same
query and parameters always produce the same statement regardless of dict
ordering, and a name used twice reuses one position.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from visitas_core.common.exceptions import ValidationError
from visitas_core.common.logging import get_logger

logger = get_logger("statements")

PLACEHOLDER_RE = re.compile(r"@(\w+)")


class Dialect(str, Enum):
    GOOGLE_SQL = "googlesql"
    POSTGRESQL = "postgresql"

    @property
    def positional(self) -> bool:
        return self is Dialect.POSTGRESQL


@dataclass(frozen=True)
class Statement:
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


def positional_key(position: int) -> str:
    return f"p{position}"


def and_where(conditions: list[str]) -> str:
    """Render predicate fragments as a WHERE clause joined with AND."""
    if not conditions:
        return ""
    return "WHERE " + " AND ".join(conditions)


class StatementBuilder:
    """Converts ``@name`` queries into the active dialect's syntax.

    With ``strict=False`` (the default) parameters the query never references
    are dropped silently. ``strict=True`` rejects them, and also rejects
    placeholders that have no parameter.
    """

    def __init__(self, dialect: Dialect | str = Dialect.GOOGLE_SQL, strict: bool = False):
        self.dialect = Dialect(dialect)
        self.strict = strict

    def build(self, sql: str, params: dict[str, Any] | None = None) -> Statement:
        params = dict(params or {})
        names = sorted(set(PLACEHOLDER_RE.findall(sql)))

        if self.strict:
            self._check_names(names, params)

        if not self.dialect.positional or not params:
            return Statement(sql, params)

        positions = {name: i for i, name in enumerate(names, start=1)}
        converted_sql = PLACEHOLDER_RE.sub(
            lambda m: f"${positions[m.group(1)]}", sql
        )

        converted_params: dict[str, Any] = {}
        dropped = []
        for name, value in params.items():
            pos = positions.get(name)
            if pos is None:
                dropped.append(name)
                continue
            converted_params[positional_key(pos)] = value
        if dropped:
            logger.debug(
                "Unreferenced statement parameters dropped",
                extra={"fields": {"params": sorted(dropped)}},
            )

        return Statement(converted_sql, converted_params)

    @staticmethod
    def _check_names(names: list[str], params: dict[str, Any]) -> None:
        unreferenced = sorted(set(params) - set(names))
        if unreferenced:
            raise ValidationError(
                f"Parameters not referenced by the query: {', '.join(unreferenced)}"
            )
        missing = sorted(set(names) - set(params))
        if missing:
            raise ValidationError(
                f"Placeholders without a parameter: {', '.join(missing)}"
            )
