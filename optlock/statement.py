"""Draft INSERT/UPDATE statements assembled by ``optlock.db`` before rendering."""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Mapping
from typing import Any, Optional, Union

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from optlock.schema import EntitySchema


class StatementKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclasses.dataclass
class OrConditions:
    """Conditions OR-ed onto the preceding WHERE expressions.

    With a single operand (what ``DB.or_where`` produces) the operand is
    joined with OR exactly where it sits in the flat WHERE list. With
    several operands the group renders as one parenthesized disjunction.
    """
    exprs: list


@dataclasses.dataclass
class AndConditions:
    """Parenthesized conjunction of WHERE expressions."""
    exprs: list


Predicate = Union[ColumnElement, OrConditions, AndConditions]


def _render(expr: Any) -> ColumnElement:
    if isinstance(expr, AndConditions):
        return build_predicate(expr.exprs)
    if isinstance(expr, OrConditions):
        return or_(*[_render(e) for e in expr.exprs])
    return expr


def build_predicate(exprs: list) -> Optional[ColumnElement]:
    """Render a flat WHERE list the way the equivalent SQL text reads.

    ``[a, b, Or(c), d]`` means ``a AND b OR c AND d``, i.e.
    ``(a AND b) OR (c AND d)``.
    """
    groups: list[list[ColumnElement]] = []
    for idx, expr in enumerate(exprs):
        if idx > 0 and isinstance(expr, OrConditions) and len(expr.exprs) == 1:
            groups.append([_render(expr.exprs[0])])
            continue
        if not groups:
            groups.append([])
        groups[-1].append(_render(expr))

    if not groups:
        return None
    clauses = [g[0] if len(g) == 1 else and_(*g) for g in groups]
    return clauses[0] if len(clauses) == 1 else or_(*clauses)


@dataclasses.dataclass
class DraftStatement:
    """In-flight statement handed to field hooks before SQL is produced.

    ``model`` is the entity (or class) the statement is scoped to and
    ``dest`` is the payload: an entity, a list of entities, a mapping of
    column values, or None. Hook assignments in ``assignments`` are always
    emitted, whatever columns were selected.
    """
    kind: StatementKind
    schema: EntitySchema
    model: Any = None
    dest: Any = None
    where: list = dataclasses.field(default_factory=list)
    selects: list[str] = dataclasses.field(default_factory=list)
    skip_hooks: bool = False
    version_rewrite_applied: bool = False
    expected_version: Optional[int] = None
    assignments: dict[str, Any] = dataclasses.field(default_factory=dict)
    row_assignments: dict[int, dict[str, Any]] = dataclasses.field(default_factory=dict)
    _reflect: Any = dataclasses.field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        # Pinned here: hooks may swap an entity dest for a column mapping.
        if self.schema.is_entity(self.target):
            self._reflect = self.target

    @property
    def target(self) -> Any:
        return self.model if self.model is not None else self.dest

    @property
    def reflect_value(self) -> Any:
        """The single entity instance whose field values drive the hooks."""
        return self._reflect

    def targets(self) -> list:
        target = self.target
        if target is None or isinstance(target, (type, Mapping)):
            return []
        if isinstance(target, (list, tuple)):
            return list(target)
        return [target]

    @property
    def restricted(self) -> bool:
        return bool(self.selects)

    def selected_columns(self) -> Optional[set[str]]:
        if not self.selects:
            return None
        return self.schema.resolve_columns(self.selects)

    def add_where(self, *exprs: Predicate) -> None:
        self.where.extend(exprs)

    def set_column(self, column: str, value: Any, *, row: Optional[int] = None) -> None:
        if row is None:
            self.assignments[column] = value
        else:
            self.row_assignments.setdefault(row, {})[column] = value
