"""
Declarative base and shared column mixins.

Catalog tables (permissions, roles) use integer keys because access tokens
carry numeric role ids; people and departments use ULID strings.
"""
from datetime import datetime
from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


class Base(DeclarativeBase):
    pass


class ULIDMixin:
    """
    26-character ULID primary key.

    Usage:
        class Department(Base, ULIDMixin):
            __tablename__ = "departments"
            name: Mapped[str] = mapped_column(String(100))
    """
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)


class TimestampMixin:
    """created_at / updated_at maintained by the database."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
