"""Tests for the dialect-portable statement builder."""

import pytest

from visitas_core.common.exceptions import ValidationError
from visitas_core.common.statements import (
    Dialect,
    Statement,
    StatementBuilder,
    and_where,
    positional_key,
)
from visitas_core.common.store import RowStore


@pytest.fixture
def pg():
    return StatementBuilder(Dialect.POSTGRESQL)


class TestNamedDialect:
    def test_passthrough(self):
        builder = StatementBuilder("googlesql")
        sql = "SELECT * FROM t WHERE a = @a AND b = @b"
        stmt = builder.build(sql, {"a": 1, "b": 2})
        assert stmt == Statement(sql, {"a": 1, "b": 2})

    def test_unreferenced_kept_when_lenient(self):
        builder = StatementBuilder("googlesql")
        stmt = builder.build("SELECT 1 WHERE a = @a", {"a": 1, "extra": 2})
        assert stmt.params == {"a": 1, "extra": 2}

    def test_unknown_dialect_rejected(self):
        with pytest.raises(ValueError):
            StatementBuilder("mysql")


class TestPositionalDialect:
    def test_sorted_positions_and_repeated_name(self, pg):
        sql = "SELECT * FROM t WHERE c = @c AND a = @a AND b = @b OR a = @a"
        stmt = pg.build(sql, {"c": "C", "a": "A", "b": "B"})
        assert stmt.sql == "SELECT * FROM t WHERE c = $3 AND a = $1 AND b = $2 OR a = $1"
        assert stmt.params == {"p1": "A", "p2": "B", "p3": "C"}

    def test_independent_of_param_order(self, pg):
        sql = "UPDATE t SET z = @z, y = @y WHERE x = @x"
        first = pg.build(sql, {"x": 1, "y": 2, "z": 3})
        second = pg.build(sql, {"z": 3, "y": 2, "x": 1})
        assert first == second

    def test_no_params_passthrough(self, pg):
        sql = "SELECT COUNT(*) FROM t"
        assert pg.build(sql, None) == Statement(sql, {})
        assert pg.build(sql, {}) == Statement(sql, {})

    def test_params_without_placeholders_dropped(self, pg):
        stmt = pg.build("SELECT 1", {"a": 1})
        assert stmt == Statement("SELECT 1", {})
        assert RowStore(db=None, builder=pg)._driver_params(stmt) is None

    def test_unreferenced_param_dropped(self, pg):
        stmt = pg.build("SELECT * FROM t WHERE a = @a", {"a": 1, "unused": 2})
        assert stmt.sql == "SELECT * FROM t WHERE a = $1"
        assert stmt.params == {"p1": 1}

    def test_name_prefix_not_confused(self, pg):
        stmt = pg.build("WHERE a = @id AND b = @id_2", {"id": 1, "id_2": 2})
        assert stmt.sql == "WHERE a = $1 AND b = $2"
        assert stmt.params == {"p1": 1, "p2": 2}

    def test_does_not_mutate_input(self, pg):
        params = {"a": 1}
        pg.build("WHERE a = @a", params)
        assert params == {"a": 1}

    def test_driver_params_ordered_by_position(self, pg):
        store = RowStore(db=None, builder=pg)
        stmt = pg.build(
            "WHERE k = @k AND b = @b AND a = @a AND j = @j",
            {"a": 1, "b": 2, "j": 3, "k": 4},
        )
        assert store._driver_params(stmt) == (1, 2, 3, 4)


class TestStrictMode:
    def test_rejects_unreferenced(self):
        builder = StatementBuilder(Dialect.POSTGRESQL, strict=True)
        with pytest.raises(ValidationError, match="unused"):
            builder.build("WHERE a = @a", {"a": 1, "unused": 2})

    def test_rejects_missing(self):
        builder = StatementBuilder(Dialect.GOOGLE_SQL, strict=True)
        with pytest.raises(ValidationError, match="without a parameter"):
            builder.build("WHERE a = @a AND b = @b", {"a": 1})

    def test_exact_match_builds(self):
        builder = StatementBuilder(Dialect.POSTGRESQL, strict=True)
        stmt = builder.build("WHERE a = @a", {"a": 1})
        assert stmt.params == {"p1": 1}


class TestHelpers:
    def test_positional_key(self):
        assert positional_key(7) == "p7"

    def test_and_where(self):
        assert and_where([]) == ""
        assert and_where(["a = @a", "b = @b"]) == "WHERE a = @a AND b = @b"
