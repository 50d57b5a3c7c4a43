"""
Load & Comment models: the tracked unit of client work and its notes.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (CheckConstraint, Column, DateTime, ForeignKey, Index,
                        Integer, String, Text)
from sqlalchemy.orm import relationship

from loadflow.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Load(Base):
    __tablename__ = "loads"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'paused', 'completed', 'transferred')",
            name="ck_loads_status",
        ),
        CheckConstraint("employee_count >= 1", name="ck_loads_employee_count"),
        Index("ix_loads_assigned_status", "assigned_to", "status"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    client_name: str = Column(String(200), nullable=False)  # type: ignore[assignment]
    client_number: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    status: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default="pending",
        server_default="pending",
        index=True,
    )
    employee_count: int = Column(  # type: ignore[assignment]
        Integer, nullable=False, default=1, server_default="1"
    )
    assigned_to: int | None = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_by: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id"), nullable=False
    )
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True), default=_utcnow, index=True
    )
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    assignee = relationship("User", foreign_keys=[assigned_to], lazy="joined")
    creator = relationship("User", foreign_keys=[created_by], lazy="joined")

    def touch(self) -> None:
        """Bump ``updated_at``; every mutation goes through here or ``onupdate``."""
        self.updated_at = _utcnow()

    @property
    def assigned_to_name(self) -> str | None:
        return self.assignee.name if self.assignee is not None else None

    @property
    def assigned_to_email(self) -> str | None:
        return self.assignee.email if self.assignee is not None else None

    @property
    def created_by_name(self) -> str | None:
        return self.creator.name if self.creator is not None else None


class Comment(Base):
    __tablename__ = "load_comments"
    __table_args__ = (Index("ix_load_comments_load_created", "load_id", "created_at"),)

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    load_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("loads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: int = Column(  # type: ignore[assignment]
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: str = Column(Text, nullable=False)  # type: ignore[assignment]
    created_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True), default=_utcnow
    )

    author = relationship("User", lazy="joined")

    @property
    def user_name(self) -> str | None:
        return self.author.name if self.author is not None else None
