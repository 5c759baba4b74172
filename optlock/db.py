"""
Chainable statement builder over SQLAlchemy's async engine.

This is the layer that callers talk to and that invokes the field hooks
declared by column types (see ``VersionType``)::

    db = DB.connect()
    user = User(name="bob", age=20)
    await db.create(user)                            # user.version == Version(1)

    result = await db.model(user).update("age", 18)  # ... WHERE id = ? AND version = 1
    if result.rows_affected == 0:
        ...                                          # someone else wrote first

Every chain call returns a new ``DB``; the original is never modified.
"""
from __future__ import annotations

import copy
import dataclasses
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy import and_, insert, select, text, update
from sqlalchemy.ext.asyncio import AsyncEngine

from optlock.database import build_engine, build_sessionmaker
from optlock.errors import MissingWhereError, SchemaError
from optlock.schema import EntitySchema, schema_for, storage_value
from optlock.statement import DraftStatement, OrConditions, StatementKind, build_predicate
from optlock.utils.logging_config import TableAdapter, get_logger

logger = get_logger("optlock.db")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _condition(cond: Any) -> Any:
    if isinstance(cond, str):
        return text(f"({cond})")
    return cond


@dataclasses.dataclass
class Result:
    """Outcome of a terminal builder call.

    ``rows_affected == 0`` after an update of a versioned entity means the
    version did not match (or the row is gone); nothing was written.
    """
    rows_affected: int = 0
    statements: list[str] = dataclasses.field(default_factory=list)

    @property
    def sql(self) -> str:
        return ";\n".join(self.statements)


class DB:
    def __init__(
        self,
        engine: AsyncEngine,
        *,
        now_func: Optional[Callable[[], datetime]] = None,
        dry_run: bool = False,
    ) -> None:
        self.engine = engine
        self.now_func = now_func or _utcnow
        self.dry_run = dry_run
        self._sessionmaker = build_sessionmaker(engine)
        self._model: Any = None
        self._where: list = []
        self._selects: list[str] = []

    @classmethod
    def connect(cls, url: Optional[str] = None, **kwargs: Any) -> "DB":
        return cls(build_engine(url), **kwargs)

    # -- chain -------------------------------------------------------------

    def _clone(self) -> "DB":
        clone = copy.copy(self)
        clone._where = list(self._where)
        clone._selects = list(self._selects)
        return clone

    def options(
        self,
        *,
        dry_run: Optional[bool] = None,
        now_func: Optional[Callable[[], datetime]] = None,
    ) -> "DB":
        clone = self._clone()
        if dry_run is not None:
            clone.dry_run = dry_run
        if now_func is not None:
            clone.now_func = now_func
        return clone

    def model(self, target: Any) -> "DB":
        """Scope the next update to an entity instance or a whole class."""
        clone = self._clone()
        clone._model = target
        return clone

    def where(self, *conds: Any) -> "DB":
        clone = self._clone()
        clone._where.extend(_condition(c) for c in conds)
        return clone

    def or_where(self, *conds: Any) -> "DB":
        parts = [_condition(c) for c in conds]
        if not parts:
            return self
        clone = self._clone()
        clone._where.append(OrConditions([parts[0] if len(parts) == 1 else and_(*parts)]))
        return clone

    def select(self, *names: str) -> "DB":
        """Restrict updates to these fields; ``"*"`` means all of them."""
        clone = self._clone()
        clone._selects.extend(names)
        return clone

    # -- create ------------------------------------------------------------

    async def create(self, value: Any, *, skip_hooks: bool = False) -> Result:
        """Insert one entity or a list of entities of the same class."""
        entities = list(value) if isinstance(value, (list, tuple)) else [value]
        if not entities:
            return Result()
        schema = schema_for(type(entities[0]))
        stmt = DraftStatement(StatementKind.CREATE, schema, dest=entities, skip_hooks=skip_hooks)

        for hook in schema.create_hooks:
            hook.modify_statement(stmt)

        now = self.now_func()
        inserts = []
        for index, entity in enumerate(stmt.targets()):
            if not stmt.skip_hooks:
                for handle in (schema.auto_create_time, schema.auto_update_time):
                    if handle is not None and schema.get(entity, handle) is None:
                        schema.set(entity, handle, now)
            row = {k: v for k, v in schema.values_of(entity).items() if v is not None}
            row.update(stmt.row_assignments.get(index, {}))
            inserts.append(insert(schema.table).values(row))

        result = Result(statements=[self._render(s) for s in inserts])
        if self.dry_run:
            return result

        log = TableAdapter(logger, schema.table.name)
        started = time.perf_counter()
        async with self._sessionmaker() as session:
            async with session.begin():
                for entity, sql_stmt in zip(stmt.targets(), inserts):
                    cursor = await session.execute(sql_stmt)
                    result.rows_affected += cursor.rowcount
                    self._backfill_keys(schema, entity, cursor.inserted_primary_key)

        log.debug(
            "insert executed",
            extra={
                "operation": "create",
                "rows_affected": result.rows_affected,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result

    async def save(self, entity: Any) -> Result:
        """Create when the primary key is unset, otherwise update every column."""
        schema = schema_for(type(entity))
        if any(schema.get(entity, pk) is None for pk in schema.primary_keys):
            return await self.create(entity)
        return await self.select("*")._update(entity)

    # -- update ------------------------------------------------------------

    async def update(self, column: str, value: Any) -> Result:
        return await self._update({column: value})

    async def updates(self, values: Any = None) -> Result:
        """Update from an entity (non-zero fields) or a mapping of columns."""
        return await self._update(values)

    async def update_column(self, column: str, value: Any) -> Result:
        return await self._update({column: value}, skip_hooks=True)

    async def update_columns(self, values: Any) -> Result:
        """Like ``updates`` but leaves auto-maintained timestamps alone."""
        return await self._update(values, skip_hooks=True)

    async def _update(self, dest: Any, *, skip_hooks: bool = False) -> Result:
        target = self._model if self._model is not None else dest
        if target is None:
            raise SchemaError("update needs a model or an entity to update")
        schema = schema_for(target if isinstance(target, type) else type(target))
        raw_dest = dest
        stmt = DraftStatement(
            StatementKind.UPDATE,
            schema,
            model=self._model,
            dest=dest,
            selects=list(self._selects),
            skip_hooks=skip_hooks,
        )

        # Key conditions lead, so chained or_where calls read "id = ? OR ...".
        entity = stmt.reflect_value
        if entity is not None:
            for handle in schema.primary_keys:
                value = schema.get(entity, handle)
                if value is not None:
                    stmt.add_where(schema.table.c[handle.column] == value)
        stmt.add_where(*self._where)

        for hook in schema.update_hooks:
            hook.modify_statement(stmt)

        if not stmt.where:
            raise MissingWhereError(schema.table.name)

        values = self._assignments(stmt)
        if not values:
            return Result()
        sql_stmt = update(schema.table).where(build_predicate(stmt.where)).values(values)
        result = Result(statements=[self._render(sql_stmt)])
        if self.dry_run:
            return result

        log = TableAdapter(logger, schema.table.name)
        started = time.perf_counter()
        async with self._sessionmaker() as session:
            async with session.begin():
                cursor = await session.execute(sql_stmt)
                result.rows_affected = cursor.rowcount

        for hook in schema.update_hooks:
            after = getattr(hook, "after_execute", None)
            if after is not None:
                after(stmt, result.rows_affected)
        if result.rows_affected and entity is not None:
            self._sync_model(schema, entity, raw_dest, values)

        if stmt.expected_version is not None and result.rows_affected == 0:
            log.info(
                "version conflict",
                extra={"operation": "update", "version": stmt.expected_version, "rows_affected": 0},
            )
        log.debug(
            "update executed",
            extra={
                "operation": "update",
                "rows_affected": result.rows_affected,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return result

    def _assignments(self, stmt: DraftStatement) -> dict[str, Any]:
        schema = stmt.schema
        selected = stmt.selected_columns()
        dest = stmt.dest

        if dest is None:
            values: dict[str, Any] = {}
        elif isinstance(dest, Mapping):
            values = {schema.column_for(k): storage_value(v) for k, v in dest.items()}
            if selected is not None:
                values = {k: v for k, v in values.items() if k in selected}
        elif schema.is_entity(dest):
            values = schema.values_of(
                dest,
                columns=selected,
                omit_zero=True,
                exclude={pk.column for pk in schema.primary_keys},
            )
        else:
            raise SchemaError(
                f"cannot update {schema.name} from {type(dest).__name__}", entity=schema.name
            )

        if schema.auto_update_time is not None and not stmt.skip_hooks:
            values[schema.auto_update_time.column] = self.now_func()
        values.update(stmt.assignments)
        return values

    # -- read --------------------------------------------------------------

    async def first(self, cls: type, *conds: Any) -> Any:
        """First row (by primary key) matching the chained and given conditions."""
        schema = schema_for(cls)
        query = select(cls)
        predicate = build_predicate([*self._where, *(_condition(c) for c in conds)])
        if predicate is not None:
            query = query.where(predicate)
        query = query.order_by(*(schema.table.c[pk.column] for pk in schema.primary_keys)).limit(1)
        async with self._sessionmaker() as session:
            return (await session.scalars(query)).first()

    async def reload(self, entity: Any) -> bool:
        """Overwrite ``entity``'s fields with the stored row. False if it is gone."""
        schema = schema_for(type(entity))
        query = select(schema.table).where(
            *(schema.table.c[pk.column] == schema.get(entity, pk) for pk in schema.primary_keys)
        )
        async with self._sessionmaker() as session:
            row = (await session.execute(query)).first()
        if row is None:
            return False

        stored = row._mapping
        for handle in schema.fields:
            schema.set(entity, handle, stored[handle.column])
        for composite in schema.composites:
            setattr(entity, composite.key, composite.factory(*(stored[h.column] for h in composite.fields)))
        return True

    # -- helpers -----------------------------------------------------------

    def _render(self, sql_stmt: Any) -> str:
        return str(sql_stmt.compile(dialect=self.engine.dialect))

    @staticmethod
    def _backfill_keys(schema: EntitySchema, entity: Any, inserted: Any) -> None:
        if not inserted:
            return
        for handle, value in zip(schema.primary_keys, inserted):
            if schema.get(entity, handle) is None and value is not None:
                schema.set(entity, handle, value)

    @staticmethod
    def _sync_model(schema: EntitySchema, entity: Any, raw_dest: Any, values: dict[str, Any]) -> None:
        # Mapping values that were actually written, plus the refreshed
        # timestamp; the version itself is handled by its hook.
        if isinstance(raw_dest, Mapping):
            for name, value in raw_dest.items():
                handle = schema.lookup(name)
                if handle is None or handle == schema.version_field:
                    continue
                if handle.column in values:
                    schema.set(entity, handle, value)
        if schema.auto_update_time is not None and schema.auto_update_time.column in values:
            schema.set(entity, schema.auto_update_time, values[schema.auto_update_time.column])
