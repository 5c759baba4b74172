"""
Nullable 64-bit version value and the column type that stores it.

A ``Version`` is either absent (row not persisted yet, or the caller does
not know the current version) or present with an integer ``N`` meaning
"the caller believes the row is at version N".

Encodings::

    text     absent -> null          present(N) -> N (bare digits)
    storage  absent -> SQL NULL      present(N) -> integer N
"""
from __future__ import annotations

import json
from typing import Any, Optional, Union

from pydantic_core import core_schema
from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

from optlock.errors import DecodeError, ParseError

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

_NULL = b"null"


def _is_int64(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and INT64_MIN <= value <= INT64_MAX
    )


class Version:
    """Immutable optional 64-bit integer used as an optimistic lock."""

    __slots__ = ("_value",)

    def __init__(self, value: Optional[int] = None) -> None:
        if value is not None and not _is_int64(value):
            raise TypeError(f"version must be a 64-bit integer or None, got {value!r}")
        self._value = value

    @property
    def value(self) -> Optional[int]:
        return self._value

    @property
    def valid(self) -> bool:
        return self._value is not None

    @classmethod
    def coerce(cls, value: Union["Version", int, None]) -> "Version":
        """Normalise what an entity attribute may hold into a ``Version``."""
        if isinstance(value, Version):
            return value
        return cls(value)

    # -- storage -----------------------------------------------------------

    @classmethod
    def scan(cls, raw: Any) -> "Version":
        """Decode a value read from the version column."""
        if raw is None:
            return cls()
        if _is_int64(raw):
            return cls(raw)
        raise DecodeError(raw)

    def to_storage(self) -> Optional[int]:
        return self._value

    # -- text --------------------------------------------------------------

    @classmethod
    def parse_text(cls, data: Union[bytes, str]) -> "Version":
        """Decode the JSON text form: ``null`` or a signed integer."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        if data == _NULL:
            return cls()
        try:
            parsed = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ParseError(data, str(exc)) from exc
        if parsed is None:
            return cls()
        if not _is_int64(parsed):
            raise ParseError(data)
        return cls(parsed)

    def to_text(self) -> bytes:
        if self._value is None:
            return _NULL
        return str(self._value).encode("ascii")

    # -- pydantic ----------------------------------------------------------

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> core_schema.CoreSchema:
        from_json = core_schema.no_info_after_validator_function(
            cls,
            core_schema.nullable_schema(
                core_schema.int_schema(strict=True, ge=INT64_MIN, le=INT64_MAX)
            ),
        )
        return core_schema.union_schema(
            [core_schema.is_instance_schema(cls), from_json],
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda v: v.value
            ),
        )

    # -- value semantics ---------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash((Version, self._value))

    def __repr__(self) -> str:
        return f"Version({self._value!r})"


class VersionType(TypeDecorator):
    """Nullable integer column holding a ``Version``.

    Declaring a column of this type is what enables optimistic locking on
    an entity: the type hands the statement builder its create and update
    hooks.
    """

    impl = BigInteger
    cache_ok = True

    @property
    def python_type(self) -> type:
        return Version

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[int]:
        if isinstance(value, Version):
            return value.to_storage()
        return value

    def process_result_value(self, value: Any, dialect: Any) -> Version:
        return Version.scan(value)

    def create_hooks(self, field: Any) -> list:
        from optlock.hooks import VersionCreateHook

        return [VersionCreateHook(field)]

    def update_hooks(self, field: Any) -> list:
        from optlock.hooks import VersionUpdateHook

        return [VersionUpdateHook(field)]
