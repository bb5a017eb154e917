"""Inspection office registry.

Labs are the custodial units of samples. Every sample belongs to exactly one
active lab, and identities are scoped to the labs they are assigned to.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from radlims.utils.time import utcnow


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Lab(Base):
    """Inspection office.

    ``code`` is the identifier stored on samples and carried in identity
    tokens; ``name`` is the display name.
    """

    __tablename__ = "lab"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Office coordinates for the map view
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Lab(id={self.id}, code='{self.code}', name='{self.name}', active={self.is_active})>"
