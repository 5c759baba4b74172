"""
Error types for optlock.

- OptLockError: Base exception
- DecodeError: Storage value is neither NULL nor an integer
- ParseError: Text value is neither ``null`` nor an integer
- SchemaError: Entity class cannot be used with the statement builder
- MissingWhereError: Update would touch every row of a table

A stale version is not an error: the update reports zero rows affected.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class OptLockError(Exception):
    """Base exception for all optlock errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "OPTLOCK_ERROR"
        self.details = details or {}


class DecodeError(OptLockError):
    """A version column held something other than NULL or an integer."""

    def __init__(self, raw: Any) -> None:
        super().__init__(
            f"cannot decode version from {type(raw).__name__} value {raw!r}",
            code="DECODE_ERROR",
            details={"raw": raw},
        )
        self.raw = raw


class ParseError(OptLockError, ValueError):
    """Text representation of a version is neither ``null`` nor an integer."""

    def __init__(self, data: Any, reason: str = "not an integer") -> None:
        super().__init__(
            f"cannot parse version from {data!r}: {reason}",
            code="PARSE_ERROR",
            details={"data": data, "reason": reason},
        )
        self.data = data


class SchemaError(OptLockError):
    """Entity mapping problem.

    Raised when:
    - The class is not an SQLAlchemy mapped class
    - The class declares more than one version column
    - A selected or assigned name matches no column
    """

    def __init__(self, message: str, entity: Optional[str] = None) -> None:
        super().__init__(message, code="SCHEMA_ERROR", details={"entity": entity})
        self.entity = entity


class MissingWhereError(OptLockError):
    """Update has no conditions and would rewrite the whole table."""

    def __init__(self, table: str) -> None:
        super().__init__(
            f"refusing to update every row of '{table}': no WHERE conditions",
            code="MISSING_WHERE",
            details={"table": table},
        )
        self.table = table
