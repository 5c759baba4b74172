"""Entities shared by the optlock tests."""

from __future__ import annotations

import dataclasses
import json
from typing import Optional

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, composite, mapped_column

from optlock import Model, Version, VersionType


class Base(DeclarativeBase):
    pass


class User(Model, Base):
    __tablename__ = "users"

    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    version: Mapped[Version] = mapped_column(VersionType, nullable=True)


@dataclasses.dataclass
class Ext:
    """Value stored through its own conversion rather than a column type."""
    credit_cards: list

    def to_storage(self) -> str:
        return json.dumps({"credit_cards": self.credit_cards})


@dataclasses.dataclass
class Address:
    city: Optional[str]
    zip_code: Optional[str]


class Account(Model, Base):
    __tablename__ = "accounts"

    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    amount: Mapped[Optional[int]] = mapped_column("amount", Integer, nullable=True)
    ext: Mapped[Optional[Ext]] = mapped_column("ext", Text, nullable=True)
    address: Mapped[Address] = composite(
        mapped_column("city", String, nullable=True),
        mapped_column("zip_code", String, nullable=True),
    )
    version: Mapped[Version] = mapped_column(VersionType, nullable=True)


class Note(Model, Base):
    """Entity without a version column."""
    __tablename__ = "notes"

    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


