# leadrelay/db/base.py
from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Matches the constraint names already present in the production schema
convention = {
    "ix": "idx_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for the form, lead, campaign and log tables."""

    metadata = MetaData(naming_convention=convention)

    def __repr__(self) -> str:
        # id plus the first identifying column keeps log lines short
        label = next(
            (
                f"{name}={getattr(self, name)!r}"
                for name in ("slug", "name", "status")
                if name in self.__table__.columns
            ),
            "",
        )
        return f"<{self.__class__.__name__} id={getattr(self, 'id', None)} {label}>".replace(" >", ">")


__all__ = ["Base"]
