"""Message model: one node of a thread's conversation tree."""
import enum
from sqlalchemy import Column, String, DateTime, Integer, Text, Boolean, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
from .threads import Base, utcnow


class MessageRole(enum.Enum):
    """Who authored a message."""
    USER = "user"
    ASSISTANT = "assistant"


class Message(Base):
    """
    SQLAlchemy model for chat messages.

    Messages form a tree through ``parent_id``; siblings are alternative
    continuations of the same parent. ``active_child_id`` records which
    child continues the active path. When it is unset the most recently
    created child is active.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=True, index=True)
    role = Column(Enum(MessageRole), nullable=False)
    content = Column(Text, nullable=False, default="")
    model = Column(String(255), nullable=True)  # Model that produced the message
    is_error = Column(Boolean, nullable=False, default=False)  # Assistant message carrying a generation failure
    prompt_tokens = Column(Integer, nullable=True)
    completion_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)
    active_child_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    thread = relationship("Thread", back_populates="messages")
    files = relationship("MessageFile", back_populates="message", passive_deletes=True, order_by="MessageFile.id")
