"""Service for per-thread generation settings."""
from typing import Optional
from uuid import UUID
from sqlalchemy.orm import Session

from models.thread_settings import ThreadSettings
from schemas.thread_settings import ThreadSettingsUpdate


class ThreadSettingsService:
    """Service class for thread settings CRUD operations."""

    @staticmethod
    def get_settings(db: Session, thread_id: UUID) -> Optional[ThreadSettings]:
        """Retrieve the settings of a thread, if any."""
        return db.query(ThreadSettings).filter(ThreadSettings.thread_id == thread_id).first()

    @staticmethod
    def build_settings(thread_id: UUID, settings_data: ThreadSettingsUpdate) -> ThreadSettings:
        """Create an unsaved settings row from a (possibly partial) draft."""
        return ThreadSettings(thread_id=thread_id, **settings_data.model_dump(exclude_unset=True))

    @staticmethod
    def upsert_settings(db: Session, thread_id: UUID, settings_update: ThreadSettingsUpdate) -> ThreadSettings:
        """Create the thread's settings or update the fields that were provided."""
        settings = ThreadSettingsService.get_settings(db, thread_id)

        if settings is None:
            settings = ThreadSettingsService.build_settings(thread_id, settings_update)
            db.add(settings)
        else:
            for field, value in settings_update.model_dump(exclude_unset=True).items():
                setattr(settings, field, value)

        db.commit()
        db.refresh(settings)

        return settings

    @staticmethod
    def delete_settings(db: Session, thread_id: UUID) -> bool:
        """Delete a thread's settings."""
        settings = ThreadSettingsService.get_settings(db, thread_id)

        if not settings:
            return False

        db.delete(settings)
        db.commit()

        return True
