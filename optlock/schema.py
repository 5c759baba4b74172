"""
Field/column mapping for entities handled by the statement builder.

``EntitySchema`` answers the two questions the version hooks need from the
mapping layer: which column a field maps to, and what an entity currently
holds in it. It also flattens an entity into a ``{column: value}`` mapping.

Storable values resolve in this order:
    1. embedded aggregate (SQLAlchemy composite) -> its columns, one level
    2. value with ``to_storage()``               -> the converted value
    3. plain scalar                              -> as is
"""

from __future__ import annotations

import dataclasses
import decimal
from functools import lru_cache
from typing import Any, Callable, Iterable, Optional, Protocol, runtime_checkable

from sqlalchemy import Column
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Mapper, configure_mappers

from optlock.errors import SchemaError
from optlock.version import Version, VersionType

AUTOTIME_CREATE = "create"
AUTOTIME_UPDATE = "update"


@runtime_checkable
class StorableValue(Protocol):
    def to_storage(self) -> Any: ...


@dataclasses.dataclass(frozen=True)
class FieldHandle:
    """A mapped attribute and the table column behind it."""
    key: str
    column: str


@dataclasses.dataclass(frozen=True)
class CompositeHandle:
    """An embedded aggregate: one attribute spread over several columns."""
    key: str
    fields: tuple[FieldHandle, ...]
    factory: Callable[..., Any] = dataclasses.field(compare=False, default=tuple)


def is_zero(value: Any) -> bool:
    """True for values an unrestricted update leaves out."""
    if value is None:
        return True
    if isinstance(value, Version):
        return not value.valid
    if isinstance(value, (bool, int, float, decimal.Decimal, str, bytes)):
        return not value
    return False


def storage_value(value: Any) -> Any:
    if isinstance(value, StorableValue):
        return value.to_storage()
    return value


class EntitySchema:
    """Reflected view of one mapped entity class."""

    def __init__(self, cls: type) -> None:
        configure_mappers()
        mapper = sa_inspect(cls, raiseerr=False)
        if not isinstance(mapper, Mapper):
            raise SchemaError(f"{cls!r} is not a mapped class", entity=getattr(cls, "__name__", None))

        self.cls = cls
        self.name = cls.__name__
        self.mapper = mapper
        self.table = mapper.local_table

        self.composites: list[CompositeHandle] = []
        composite_columns: set[str] = set()
        for prop in mapper.composites:
            subs = tuple(FieldHandle(p.key, p.columns[0].key) for p in prop.props)
            composite_columns.update(h.column for h in subs)
            self.composites.append(CompositeHandle(prop.key, subs, prop.composite_class))

        self.fields: list[FieldHandle] = []
        self.version_field: Optional[FieldHandle] = None
        self.auto_create_time: Optional[FieldHandle] = None
        self.auto_update_time: Optional[FieldHandle] = None
        self.create_hooks: list = []
        self.update_hooks: list = []
        self._by_name: dict[str, FieldHandle] = {}

        for prop in mapper.column_attrs:
            column = prop.columns[0]
            if not isinstance(column, Column) or column.table is not self.table:
                continue
            handle = FieldHandle(prop.key, column.key)
            self._by_name[handle.key] = handle
            self._by_name[handle.column] = handle
            if handle.column not in composite_columns:
                self.fields.append(handle)

            if isinstance(column.type, VersionType):
                if self.version_field is not None:
                    raise SchemaError(
                        f"{self.name} declares more than one version column "
                        f"('{self.version_field.column}', '{handle.column}')",
                        entity=self.name,
                    )
                self.version_field = handle

            autotime = column.info.get("autotime")
            if autotime == AUTOTIME_CREATE:
                self.auto_create_time = handle
            elif autotime == AUTOTIME_UPDATE:
                self.auto_update_time = handle

            if hasattr(column.type, "create_hooks"):
                self.create_hooks.extend(column.type.create_hooks(handle))
            if hasattr(column.type, "update_hooks"):
                self.update_hooks.extend(column.type.update_hooks(handle))

        self.primary_keys: list[FieldHandle] = [
            self._by_name[col.key] for col in mapper.primary_key
        ]

    def __repr__(self) -> str:
        return f"<EntitySchema {self.name} table={self.table.name}>"

    # -- lookup ------------------------------------------------------------

    def lookup(self, name: str) -> Optional[FieldHandle]:
        return self._by_name.get(name)

    def column_for(self, name: str) -> str:
        handle = self.lookup(name)
        if handle is None:
            raise SchemaError(f"{self.name} has no column or field named '{name}'", entity=self.name)
        return handle.column

    def resolve_columns(self, names: Iterable[str]) -> set[str]:
        """Column keys for a selection; ``*`` selects every column."""
        columns: set[str] = set()
        for name in names:
            if name == "*":
                columns.update(h.column for h in self._by_name.values())
                continue
            composite = next((c for c in self.composites if c.key == name), None)
            if composite is not None:
                columns.update(h.column for h in composite.fields)
                continue
            columns.add(self.column_for(name))
        return columns

    # -- values ------------------------------------------------------------

    def get(self, entity: Any, handle: FieldHandle) -> Any:
        return getattr(entity, handle.key, None)

    def set(self, entity: Any, handle: FieldHandle, value: Any) -> None:
        setattr(entity, handle.key, value)

    def is_entity(self, value: Any) -> bool:
        return isinstance(value, self.cls)

    def values_of(
        self,
        entity: Any,
        *,
        columns: Optional[set[str]] = None,
        omit_zero: bool = False,
        keep: Iterable[str] = (),
        exclude: Iterable[str] = (),
    ) -> dict[str, Any]:
        """Flatten ``entity`` into ``{column: storage value}``.

        With ``columns`` only those columns are taken, zero or not.
        Otherwise ``omit_zero`` drops zero values except for columns in
        ``keep``.
        """
        keep = set(keep)
        exclude = set(exclude)

        def wanted(handle: FieldHandle, value: Any) -> bool:
            if handle.column in exclude:
                return False
            if columns is not None:
                return handle.column in columns
            if omit_zero and is_zero(value):
                return handle.column in keep
            return True

        values: dict[str, Any] = {}
        for handle in self.fields:
            value = self.get(entity, handle)
            if wanted(handle, value):
                values[handle.column] = storage_value(value)

        for composite in self.composites:
            if getattr(entity, composite.key, None) is None and columns is None and omit_zero:
                continue
            for handle in composite.fields:
                value = self.get(entity, handle)
                if wanted(handle, value):
                    values[handle.column] = storage_value(value)
        return values


@lru_cache(maxsize=None)
def schema_for(cls: type) -> EntitySchema:
    return EntitySchema(cls)
