"""
SQLAlchemy model for persisted session snapshots.

One row per session: the full snapshot as JSON text plus its version so
the row can be inspected without decoding the payload.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ServiceSessionRecord(Base):
    """Latest snapshot of a service session."""

    __tablename__ = "service_sessions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    # camelCase wire JSON of ServiceState
    state: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<ServiceSessionRecord id={self.id!r} version={self.version}>"
