"""Thread model for conversation management."""
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Integer, Uuid
from sqlalchemy.orm import declarative_base, relationship
from uuid import uuid4

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Thread(Base):
    """
    SQLAlchemy model for conversation threads.

    A thread owns a tree of messages. ``active_root_id`` selects which root
    message starts the active path when the thread has several roots; when
    unset, the most recently created root is used.
    """
    __tablename__ = "threads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, index=True)
    title = Column(String(255), nullable=False, default="New Chat")
    active_root_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    messages = relationship("Message", back_populates="thread", passive_deletes=True)
    settings = relationship("ThreadSettings", back_populates="thread", uselist=False, passive_deletes=True)
