from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from optlock.schema import AUTOTIME_CREATE, AUTOTIME_UPDATE


class Model:
    """Bookkeeping columns for entities: surrogate key plus create/update timestamps.

    Mix in ahead of the declarative base::

        class User(Model, Base):
            __tablename__ = "users"
            name: Mapped[str] = mapped_column(String)
            version: Mapped[Version] = mapped_column(VersionType, nullable=True)
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Filled by the builder on create; updated_at again on every hooked update
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, info={"autotime": AUTOTIME_CREATE}
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, info={"autotime": AUTOTIME_UPDATE}
    )
