"""Thread service for CRUD operations."""
from typing import Optional, List
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import desc, delete
import logging

from models.threads import Thread
from models.messages import Message
from models.files import MessageFile
from models.thread_settings import ThreadSettings
from schemas.threads import ThreadCreate, ThreadUpdate
from schemas.thread_settings import ThreadSettingsUpdate
from services.thread_settings import ThreadSettingsService

logger = logging.getLogger(__name__)


class ThreadService:
    """Service class for thread CRUD operations."""

    @staticmethod
    def create_thread(
        db: Session,
        thread_data: ThreadCreate,
        settings: Optional[ThreadSettingsUpdate] = None
    ) -> Thread:
        """Create a new thread, persisting optional draft settings in the same transaction."""
        db_thread = Thread(title=thread_data.title or "New Chat")

        db.add(db_thread)
        db.flush()

        if settings is not None and settings.model_fields_set:
            db.add(ThreadSettingsService.build_settings(db_thread.id, settings))

        db.commit()
        db.refresh(db_thread)

        logger.info(f"Created thread {db_thread.id}")
        return db_thread

    @staticmethod
    def get_thread(db: Session, thread_id: UUID) -> Optional[Thread]:
        """Retrieve a thread by ID."""
        return db.query(Thread).filter(Thread.id == thread_id).first()

    @staticmethod
    def list_threads(db: Session, skip: int = 0, limit: int = 20) -> List[Thread]:
        """Retrieve threads, most recently active first."""
        return db.query(Thread).order_by(
            desc(Thread.updated_at)
        ).offset(skip).limit(limit).all()

    @staticmethod
    def update_thread(db: Session, thread_id: UUID, thread_update: ThreadUpdate) -> Optional[Thread]:
        """Update a thread's information."""
        thread = ThreadService.get_thread(db, thread_id)

        if not thread:
            return None

        if thread_update.title is not None:
            thread.title = thread_update.title

        db.commit()
        db.refresh(thread)

        return thread

    @staticmethod
    def delete_thread(db: Session, thread_id: UUID) -> bool:
        """Delete a thread with its messages, attachments and settings."""
        thread = ThreadService.get_thread(db, thread_id)

        if not thread:
            return False

        for model in (MessageFile, Message, ThreadSettings):
            db.execute(
                delete(model)
                .where(model.thread_id == thread_id)
                .execution_options(synchronize_session=False)
            )
        db.execute(
            delete(Thread)
            .where(Thread.id == thread_id)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.expunge_all()

        logger.info(f"Deleted thread {thread_id}")
        return True
