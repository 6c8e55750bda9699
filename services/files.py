"""File service for message attachments."""
from typing import List, Iterable, Sequence
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import select, delete
import logging

from exceptions import ValidationError
from models.files import MessageFile
from schemas.messages import AttachmentCreate
from settings import MAX_ATTACHMENT_SIZE

logger = logging.getLogger(__name__)


class FileService:
    """Service class for attachment rows. Callers own the commit."""

    @staticmethod
    def validate_attachment(attachment: AttachmentCreate) -> None:
        """Raise ValidationError for unnamed, empty or oversized files."""
        if not attachment.file_name or not attachment.file_name.strip():
            raise ValidationError("Attachment must have a file name")

        if not attachment.data:
            raise ValidationError(f"Attachment {attachment.file_name} is empty")

        if len(attachment.data) > MAX_ATTACHMENT_SIZE:
            raise ValidationError(
                f"Attachment {attachment.file_name} exceeds maximum allowed size of "
                f"{MAX_ATTACHMENT_SIZE // 1024 // 1024}MB"
            )

    @staticmethod
    def add_files(
        db: Session,
        thread_id: UUID,
        message_id: int,
        attachments: Iterable[AttachmentCreate]
    ) -> List[MessageFile]:
        """Stage attachment rows for a message."""
        files = []
        for attachment in attachments:
            FileService.validate_attachment(attachment)
            db_file = MessageFile(
                thread_id=thread_id,
                message_id=message_id,
                file_name=attachment.file_name,
                mime_type=attachment.mime_type,
                size=len(attachment.data),
                blob=attachment.data
            )
            db.add(db_file)
            files.append(db_file)

        return files

    @staticmethod
    def list_message_files(db: Session, message_id: int) -> List[MessageFile]:
        """Get all files attached to a message, oldest first."""
        return list(db.scalars(
            select(MessageFile)
            .where(MessageFile.message_id == message_id)
            .order_by(MessageFile.id)
        ))

    @staticmethod
    def remove_files(db: Session, message_id: int, file_ids: Sequence[int]) -> int:
        """Stage deletion of the given files of a message; other messages' files are ignored."""
        if not file_ids:
            return 0

        result = db.execute(
            delete(MessageFile)
            .where(MessageFile.message_id == message_id, MessageFile.id.in_(list(file_ids)))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @staticmethod
    def delete_for_messages(db: Session, message_ids: Sequence[int]) -> None:
        """Stage deletion of every file attached to the given messages."""
        if not message_ids:
            return

        db.execute(
            delete(MessageFile)
            .where(MessageFile.message_id.in_(list(message_ids)))
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def to_attachments(files: Iterable[MessageFile]) -> List[AttachmentCreate]:
        """Re-materialise stored files as attachments for a new message."""
        return [
            AttachmentCreate(file_name=f.file_name, mime_type=f.mime_type, data=f.blob)
            for f in files
        ]
