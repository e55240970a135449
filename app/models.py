"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String, Text, func

from app.storage import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(Base):
    """
    SQLAlchemy model for guestbook submissions.

    Table: messages
    Primary Key: id (autoincrement, never reused)
    """
    __tablename__ = "messages"

    # BIGSERIAL on Postgres; SQLite only autoincrements a plain INTEGER primary key
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.current_timestamp(),
    )
    # Refreshed by the ORM on UPDATE; no update endpoint exists
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.current_timestamp(),
        onupdate=utcnow,
    )

    __table_args__ = (
        # SQLite would otherwise hand out the id of a deleted newest row again
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Message id={self.id} name={self.name!r}>"


# Listings sort newest first
Index("idx_messages_created_at", Message.created_at.desc())
