"""Per-thread generation settings."""
from sqlalchemy import Column, String, Integer, Text, ForeignKey, JSON, Uuid
from sqlalchemy.orm import relationship
from .threads import Base


class ThreadSettings(Base):
    """Optional generation overrides for a single thread."""
    __tablename__ = "thread_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, unique=True)
    provider_id = Column(String(255), nullable=True)
    model_id = Column(String(255), nullable=True)
    system_prompt = Column(Text, nullable=True)
    context_window = Column(Integer, nullable=True)  # Number of messages sent as context
    max_tokens = Column(Integer, nullable=True)
    extra_params = Column(JSON, nullable=True)

    thread = relationship("Thread", back_populates="settings")
