"""
Version hooks invoked by the statement builder.

Create: every inserted entity gets a stored version, 1 unless the caller
already set one.

Update: the statement becomes a version-checked, atomically incrementing
update::

    UPDATE t SET ..., version=(t.version + 1) WHERE ... AND t.version = N

The engine runs the check and the increment as one statement, so of two
writers holding version N only one matches a row. The loser gets zero rows
affected, which is the conflict signal.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping

from sqlalchemy import literal_column

from optlock.schema import FieldHandle
from optlock.statement import AndConditions, DraftStatement, OrConditions
from optlock.utils.logging_config import get_logger
from optlock.version import Version

logger = get_logger("optlock.hooks")


@dataclasses.dataclass(frozen=True)
class VersionCreateHook:
    field: FieldHandle

    def modify_statement(self, stmt: DraftStatement) -> None:
        for index, entity in enumerate(stmt.targets()):
            current = Version.coerce(stmt.schema.get(entity, self.field))
            value = current.value if current.valid else 1
            stmt.schema.set(entity, self.field, Version(value))
            stmt.set_column(self.field.column, value, row=index)


@dataclasses.dataclass(frozen=True)
class VersionUpdateHook:
    field: FieldHandle

    def modify_statement(self, stmt: DraftStatement) -> None:
        if stmt.version_rewrite_applied:
            return

        _group_degenerate_or(stmt)

        column = stmt.schema.table.c[self.field.column]
        entity = stmt.reflect_value
        if entity is not None:
            version = Version.coerce(stmt.schema.get(entity, self.field))
            if version.valid:
                stmt.add_where(column == version.value)
                stmt.expected_version = version.value

        if stmt.schema.is_entity(stmt.dest):
            stmt.dest = self._payload(stmt, stmt.dest)
        elif isinstance(stmt.dest, Mapping):
            stmt.dest = {
                k: v for k, v in stmt.dest.items()
                if stmt.schema.lookup(k) != self.field
            }

        stmt.set_column(self.field.column, column + literal_column("1"))
        stmt.version_rewrite_applied = True
        logger.debug(
            "version rewrite applied",
            extra={"table": stmt.schema.table.name, "version": stmt.expected_version},
        )

    def after_execute(self, stmt: DraftStatement, rows_affected: int) -> None:
        """Mirror the stored increment on the in-memory entity.

        Only for version-checked updates: an entity whose version was absent
        keeps it absent even though the stored value moved.
        """
        if stmt.expected_version is None or rows_affected < 1:
            return
        entity = stmt.reflect_value
        if entity is not None:
            stmt.schema.set(entity, self.field, Version(stmt.expected_version + 1))

    def _payload(self, stmt: DraftStatement, entity: object) -> dict:
        schema = stmt.schema
        exclude = {self.field.column, *(pk.column for pk in schema.primary_keys)}
        keep = set()
        if schema.auto_update_time is not None and not stmt.skip_hooks:
            keep.add(schema.auto_update_time.column)
        return schema.values_of(
            entity,
            columns=stmt.selected_columns(),
            omit_zero=True,
            keep=keep,
            exclude=exclude,
        )


def _group_degenerate_or(stmt: DraftStatement) -> None:
    # A one-operand OrConditions joins with OR; the version predicate
    # appended after it must AND with the whole existing condition.
    exprs = stmt.where
    if len(exprs) > 1 and any(
        isinstance(e, OrConditions) and len(e.exprs) == 1 for e in exprs
    ):
        stmt.where = [AndConditions(list(exprs))]
