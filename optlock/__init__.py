"""Optimistic locking for SQLAlchemy entities through a version column."""

from .errors import (
    DecodeError,
    MissingWhereError,
    OptLockError,
    ParseError,
    SchemaError,
)
from .version import Version, VersionType
from .hooks import VersionCreateHook, VersionUpdateHook
from .models import Model
from .db import DB, Result

__version__ = "0.1.0"
