"""Read-only aggregate queries against the audited data source.

Checks never build SQL text. They describe what to count with the closed set
of predicate types below, and ``SqlQueryExecutor`` turns those into SQLAlchemy
Core statements: identifiers are quoted by the dialect and every value is a
bound parameter.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Protocol, Sequence, Union

from sqlalchemy import String, and_, cast, column, func, inspect, literal, not_, select, table, tuple_
from sqlalchemy import types as sqltypes
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DataError,
    DBAPIError,
    InterfaceError,
    NoSuchTableError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)
from sqlalchemy.sql.expression import ColumnElement, TableClause

from dqaudit.errors import ExecutionError


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotNull:
    column: str


@dataclass(frozen=True)
class NotBlank:
    """Non-null and not empty once surrounding whitespace is trimmed."""

    column: str


@dataclass(frozen=True)
class Between:
    """Inclusive on both ends."""

    column: str
    low: Any
    high: Any


@dataclass(frozen=True)
class InValues:
    column: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class Matches:
    """Full match of ``pattern``; the executor anchors it."""

    column: str
    pattern: str


@dataclass(frozen=True)
class Compare:
    column: str
    operator: str
    other_column: str


@dataclass(frozen=True)
class Duplicated:
    """The column value occurs more than once among non-null values.

    When sampling a keyed table only the copies after the first occurrence
    (by primary key) match.
    """

    column: str


@dataclass(frozen=True)
class MissingFrom:
    """No row of the parent column equals the value (anti-join)."""

    column: str
    parent_schema: str
    parent_table: str
    parent_column: str


@dataclass(frozen=True)
class AllOf:
    predicates: tuple["Predicate", ...]


@dataclass(frozen=True)
class Not:
    predicate: "Predicate"


Predicate = Union[NotNull, NotBlank, Between, InValues, Matches, Compare, Duplicated, MissingFrom, AllOf, Not]


def all_of(*predicates: Predicate) -> AllOf:
    return AllOf(tuple(predicates))


def predicate_columns(predicate: Predicate | None) -> set[str]:
    """Columns of the target table referenced by *predicate*."""
    if predicate is None:
        return set()
    if isinstance(predicate, AllOf):
        found: set[str] = set()
        for item in predicate.predicates:
            found |= predicate_columns(item)
        return found
    if isinstance(predicate, Not):
        return predicate_columns(predicate.predicate)
    if isinstance(predicate, Compare):
        return {predicate.column, predicate.other_column}
    return {predicate.column}


def anchored(pattern: str) -> str:
    return f"^(?:{pattern})$"


# ---------------------------------------------------------------------------
# Executor contract
# ---------------------------------------------------------------------------


class QueryExecutor(Protocol):
    def count_where(self, schema: str, table_name: str, predicate: Predicate | None = None) -> int:
        ...

    def count_grouped_duplicates(self, schema: str, table_name: str, column_name: str) -> int:
        ...

    def count_anti_join(
        self,
        child_schema: str,
        child_table: str,
        child_column: str,
        parent_schema: str,
        parent_table: str,
        parent_column: str,
    ) -> int:
        ...

    def column_type(self, schema: str, table_name: str, column_name: str) -> str:
        ...

    def sample_where(
        self,
        schema: str,
        table_name: str,
        column_name: str,
        predicate: Predicate,
        limit: int,
    ) -> list[tuple[str | None, str | None]]:
        ...


_COMPARATORS = {
    ">": lambda left, right: left > right,
    "<": lambda left, right: left < right,
    ">=": lambda left, right: left >= right,
    "<=": lambda left, right: left <= right,
    "=": lambda left, right: left == right,
    "<>": lambda left, right: left != right,
}


def _short_message(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    text = str(orig if orig is not None else exc).strip()
    return text.splitlines()[0] if text else exc.__class__.__name__


@contextmanager
def _translated_errors(target: str) -> Iterator[None]:
    try:
        yield
    except ExecutionError:
        raise
    except NoSuchTableError as exc:
        raise ExecutionError(ExecutionError.TARGET_NOT_FOUND, f"{target} not found") from exc
    except (DataError, ProgrammingError) as exc:
        raise ExecutionError(ExecutionError.TYPE_MISMATCH, f"{target}: {_short_message(exc)}") from exc
    except (OperationalError, InterfaceError) as exc:
        raise ExecutionError(ExecutionError.TRANSIENT, f"{target}: {_short_message(exc)}") from exc
    except DBAPIError as exc:
        kind = ExecutionError.TRANSIENT if exc.connection_invalidated else ExecutionError.TYPE_MISMATCH
        raise ExecutionError(kind, f"{target}: {_short_message(exc)}") from exc
    except SQLAlchemyError as exc:
        raise ExecutionError(ExecutionError.TRANSIENT, f"{target}: {_short_message(exc)}") from exc


class SqlQueryExecutor:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # -- metadata -----------------------------------------------------------

    def _columns(self, schema: str, table_name: str) -> list[dict[str, Any]]:
        target = f"{schema}.{table_name}"
        with _translated_errors(target):
            inspector = inspect(self.engine)
            if not inspector.has_table(table_name, schema=schema):
                raise ExecutionError(ExecutionError.TARGET_NOT_FOUND, f"Table {target} not found")
            return inspector.get_columns(table_name, schema=schema)

    def _require(self, schema: str, table_name: str, columns: set[str]) -> None:
        existing = {col["name"] for col in self._columns(schema, table_name)}
        missing = sorted(columns - existing)
        if missing:
            raise ExecutionError(
                ExecutionError.TARGET_NOT_FOUND,
                f"Column(s) {', '.join(missing)} not found in {schema}.{table_name}",
            )

    def _primary_key(self, schema: str, table_name: str) -> list[str]:
        with _translated_errors(f"{schema}.{table_name}"):
            constraint = inspect(self.engine).get_pk_constraint(table_name, schema=schema)
        return list(constraint.get("constrained_columns") or [])

    def column_type(self, schema: str, table_name: str, column_name: str) -> str:
        for col in self._columns(schema, table_name):
            if col["name"] != column_name:
                continue
            col_type = col["type"]
            if isinstance(col_type, sqltypes.DateTime):
                return "datetime"
            if isinstance(col_type, sqltypes.Date):
                return "date"
            if isinstance(col_type, (sqltypes.Integer, sqltypes.Numeric, sqltypes.Float)):
                return "numeric"
            return "text"
        raise ExecutionError(
            ExecutionError.TARGET_NOT_FOUND,
            f"Column {column_name} not found in {schema}.{table_name}",
        )

    # -- statement construction --------------------------------------------

    @staticmethod
    def _table(schema: str, table_name: str, columns: set[str]) -> TableClause:
        return table(table_name, *(column(name) for name in sorted(columns)), schema=schema)

    def _clause(self, predicate: Predicate, tbl: TableClause, key_columns: Sequence[str] = ()) -> ColumnElement:
        if isinstance(predicate, AllOf):
            return and_(*(self._clause(item, tbl, key_columns) for item in predicate.predicates))
        if isinstance(predicate, Not):
            return not_(self._clause(predicate.predicate, tbl, key_columns))
        col = tbl.c[predicate.column]
        if isinstance(predicate, NotNull):
            return col.is_not(None)
        if isinstance(predicate, NotBlank):
            return and_(col.is_not(None), func.trim(cast(col, String)) != "")
        if isinstance(predicate, Between):
            return and_(col >= literal(predicate.low), col <= literal(predicate.high))
        if isinstance(predicate, InValues):
            return cast(col, String).in_(list(predicate.values))
        if isinstance(predicate, Matches):
            return cast(col, String).regexp_match(anchored(predicate.pattern))
        if isinstance(predicate, Compare):
            comparator = _COMPARATORS[predicate.operator]
            return comparator(col, tbl.c[predicate.other_column])
        if isinstance(predicate, Duplicated):
            # A duplicated key column cannot tell its own copies apart; flag them all.
            if key_columns and predicate.column not in key_columns:
                return self._later_duplicate(predicate.column, tbl, key_columns)
            inner = self._table(tbl.schema, tbl.name, {predicate.column}).alias("dup")
            inner_col = inner.c[predicate.column]
            duplicated_values = (
                select(inner_col)
                .where(inner_col.is_not(None))
                .group_by(inner_col)
                .having(func.count() > 1)
            )
            return col.in_(duplicated_values)
        if isinstance(predicate, MissingFrom):
            parent = self._table(
                predicate.parent_schema, predicate.parent_table, {predicate.parent_column}
            ).alias("parent")
            match = select(literal(1)).where(parent.c[predicate.parent_column] == col).exists()
            return not_(match)
        raise TypeError(f"Unsupported predicate: {predicate!r}")

    def _later_duplicate(self, column_name: str, tbl: TableClause, key_columns: Sequence[str]) -> ColumnElement:
        """Rows whose value already appeared on a row with a lower key.

        The first occurrence of each value is the legitimate one; only the
        copies after it are violations.
        """
        inner = self._table(tbl.schema, tbl.name, {column_name, *key_columns}).alias("dup")
        if len(key_columns) == 1:
            [key] = key_columns
            earlier = inner.c[key] < tbl.c[key]
        else:
            earlier = tuple_(*(inner.c[key] for key in key_columns)) < tuple_(*(tbl.c[key] for key in key_columns))
        return select(literal(1)).where(inner.c[column_name] == tbl.c[column_name], earlier).exists()

    def _scalar(self, stmt: Any, target: str) -> int:
        with _translated_errors(target):
            with self.engine.connect() as conn:
                value = conn.execute(stmt).scalar()
        return int(value or 0)

    # -- counts -------------------------------------------------------------

    def count_where(self, schema: str, table_name: str, predicate: Predicate | None = None) -> int:
        columns = predicate_columns(predicate)
        self._require(schema, table_name, columns)
        self._require_parents(predicate)
        tbl = self._table(schema, table_name, columns)
        stmt = select(func.count()).select_from(tbl)
        if predicate is not None:
            stmt = stmt.where(self._clause(predicate, tbl))
        return self._scalar(stmt, f"{schema}.{table_name}")

    def count_grouped_duplicates(self, schema: str, table_name: str, column_name: str) -> int:
        self._require(schema, table_name, {column_name})
        tbl = self._table(schema, table_name, {column_name})
        col = tbl.c[column_name]
        groups = (
            select(func.count().label("group_size"))
            .select_from(tbl)
            .where(col.is_not(None))
            .group_by(col)
            .having(func.count() > 1)
            .subquery("groups")
        )
        stmt = select(func.coalesce(func.sum(groups.c.group_size - 1), 0))
        return self._scalar(stmt, f"{schema}.{table_name}")

    def count_anti_join(
        self,
        child_schema: str,
        child_table: str,
        child_column: str,
        parent_schema: str,
        parent_table: str,
        parent_column: str,
    ) -> int:
        predicate = all_of(
            NotNull(child_column),
            MissingFrom(child_column, parent_schema, parent_table, parent_column),
        )
        return self.count_where(child_schema, child_table, predicate)

    def _require_parents(self, predicate: Predicate | None) -> None:
        for item in _iter_predicates(predicate):
            if isinstance(item, MissingFrom):
                self._require(item.parent_schema, item.parent_table, {item.parent_column})

    # -- samples ------------------------------------------------------------

    def sample_where(
        self,
        schema: str,
        table_name: str,
        column_name: str,
        predicate: Predicate,
        limit: int,
    ) -> list[tuple[str | None, str | None]]:
        if limit <= 0:
            return []
        key_columns = self._primary_key(schema, table_name)
        columns = predicate_columns(predicate) | {column_name} | set(key_columns)
        self._require(schema, table_name, columns)
        self._require_parents(predicate)
        tbl = self._table(schema, table_name, columns)
        selected = [tbl.c[name] for name in key_columns] + [tbl.c[column_name]]
        stmt = select(*selected).where(self._clause(predicate, tbl, key_columns)).limit(limit)
        if key_columns:
            stmt = stmt.order_by(*(tbl.c[name] for name in key_columns))
        with _translated_errors(f"{schema}.{table_name}"):
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        return [_format_sample(key_columns, row) for row in rows]


def _iter_predicates(predicate: Predicate | None) -> Iterator[Predicate]:
    if predicate is None:
        return
    yield predicate
    if isinstance(predicate, AllOf):
        for item in predicate.predicates:
            yield from _iter_predicates(item)
    elif isinstance(predicate, Not):
        yield from _iter_predicates(predicate.predicate)


def _format_sample(key_columns: list[str], row: Any) -> tuple[str | None, str | None]:
    value = row[len(key_columns)]
    column_value = None if value is None else str(value)
    if not key_columns:
        return None, column_value
    if len(key_columns) == 1:
        key = row[0]
        return (None if key is None else str(key)), column_value
    record_key = {key_columns[idx]: row[idx] for idx in range(len(key_columns))}
    return json.dumps(record_key, default=str), column_value
