"""File attachment model."""
from sqlalchemy import Column, String, DateTime, Integer, LargeBinary, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from .threads import Base, utcnow


class MessageFile(Base):
    """
    SQLAlchemy model for files attached to a message.

    The binary payload is stored alongside its metadata so a thread can be
    rebuilt without any external object storage.
    """
    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(512), nullable=False)
    mime_type = Column(String(255), nullable=False)
    size = Column(Integer, nullable=False)  # Size in bytes
    blob = Column(LargeBinary, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    message = relationship("Message", back_populates="files")
