"""
Message store: persistence and tree mutation primitives.

Messages of a thread form a tree through ``parent_id``. The primitives here
append nodes, re-point active-child pointers, edit content in place and
remove whole subtrees. Every mutating call commits its own transaction so
readers never observe a partially applied change.
"""
from collections import defaultdict
from typing import Optional, List, Iterable, Sequence, Dict, Any
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import select, delete, inspect
import logging

from exceptions import ValidationError, NotFoundError
from models.threads import Thread, utcnow
from models.messages import Message, MessageRole
from schemas.messages import AttachmentCreate
from services.files import FileService

logger = logging.getLogger(__name__)

# Keeps IN (...) lists below SQLite's bound-parameter limit
DELETE_BATCH_SIZE = 500


class MessageService:
    """Service class for message tree operations."""

    @staticmethod
    def get_message(db: Session, message_id: int) -> Optional[Message]:
        """Retrieve a message by ID, refreshed from the database."""
        return db.get(Message, message_id, populate_existing=True)

    @staticmethod
    def create_message(
        db: Session,
        thread_id: UUID,
        parent_id: Optional[int],
        role: MessageRole,
        content: str,
        model: Optional[str] = None,
        attachments: Iterable[AttachmentCreate] = (),
        is_error: bool = False,
        usage: Optional[Dict[str, Any]] = None,
        activate: bool = True
    ) -> Message:
        """
        Append a message to a thread's tree.

        Args:
            db: Database session
            thread_id: Owning thread
            parent_id: Parent message in the same thread, or None for a root
            role: Author of the message
            content: Message text
            model: Model identifier that produced the message
            attachments: Files stored with the message
            is_error: Whether the message carries a generation failure
            usage: Token counts (prompt_tokens, completion_tokens, total_tokens)
            activate: Put the new message on the thread's active path

        Returns:
            The persisted message
        """
        thread = db.get(Thread, thread_id)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} not found")

        if parent_id is not None:
            parent = db.get(Message, parent_id)
            if parent is None or parent.thread_id != thread_id:
                raise ValidationError(f"Parent message {parent_id} does not belong to thread {thread_id}")

        attachments = list(attachments)
        for attachment in attachments:
            FileService.validate_attachment(attachment)

        usage = usage or {}
        message = Message(
            thread_id=thread_id,
            parent_id=parent_id,
            role=role,
            content=content or "",
            model=model,
            is_error=is_error,
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
            created_at=utcnow()
        )

        db.add(message)
        db.flush()

        if attachments:
            FileService.add_files(db, thread_id, message.id, attachments)

        if activate:
            MessageService._point_ancestors_at(db, thread, message)

        thread.updated_at = utcnow()
        db.commit()
        db.refresh(message)

        return message

    @staticmethod
    def mark_active(db: Session, message: Message) -> None:
        """
        Make ``message`` part of its thread's active path.

        Re-points the active-child pointer of every ancestor (and the
        thread's root pointer) toward ``message``. Pointers below
        ``message`` are left untouched, so its previously active
        continuation is restored as well.
        """
        thread = db.get(Thread, message.thread_id)
        if thread is None:
            raise NotFoundError(f"Thread {message.thread_id} not found")

        MessageService._point_ancestors_at(db, thread, message)
        db.commit()

    @staticmethod
    def _point_ancestors_at(db: Session, thread: Thread, message: Message) -> None:
        child = message
        while child.parent_id is not None:
            parent = db.get(Message, child.parent_id)
            if parent.active_child_id != child.id:
                parent.active_child_id = child.id
            child = parent

        if thread.active_root_id != child.id:
            thread.active_root_id = child.id

    @staticmethod
    def update_content(
        db: Session,
        message_id: int,
        content: str,
        removed_file_ids: Sequence[int] = (),
        new_files: Iterable[AttachmentCreate] = ()
    ) -> Message:
        """Edit a message's content and attachments in place. Tree shape is unchanged."""
        message = MessageService.get_message(db, message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")

        new_files = list(new_files)
        for attachment in new_files:
            FileService.validate_attachment(attachment)

        message.content = content
        FileService.remove_files(db, message_id, removed_file_ids)
        FileService.add_files(db, message.thread_id, message_id, new_files)

        db.commit()
        db.refresh(message)

        return message

    @staticmethod
    def delete_subtree(db: Session, thread_id: UUID, message_id: int) -> List[int]:
        """
        Delete a message, all of its descendants and their attachments.

        The subtree is collected with an explicit worklist over a
        parent -> children index of the thread, then removed in a single
        transaction. Deleting an id that no longer exists is a no-op.

        Returns:
            IDs of the deleted messages
        """
        root = MessageService.get_message(db, message_id)
        if root is None or root.thread_id != thread_id:
            return []

        children = defaultdict(list)
        rows = db.execute(
            select(Message.id, Message.parent_id).where(Message.thread_id == thread_id)
        ).all()
        for child_id, parent_id in rows:
            children[parent_id].append(child_id)

        doomed = []
        worklist = [root.id]
        while worklist:
            current = worklist.pop()
            doomed.append(current)
            worklist.extend(children.get(current, ()))

        if root.parent_id is not None:
            parent = db.get(Message, root.parent_id)
            if parent is not None and parent.active_child_id == root.id:
                parent.active_child_id = None
        else:
            thread = db.get(Thread, thread_id)
            if thread is not None and thread.active_root_id == root.id:
                thread.active_root_id = None

        for start in range(0, len(doomed), DELETE_BATCH_SIZE):
            batch = doomed[start:start + DELETE_BATCH_SIZE]
            FileService.delete_for_messages(db, batch)
            db.execute(
                delete(Message)
                .where(Message.id.in_(batch))
                .execution_options(synchronize_session=False)
            )

        doomed_ids = set(doomed)
        for obj in list(db.identity_map.values()):
            if isinstance(obj, Message) and inspect(obj).identity[0] in doomed_ids:
                db.expunge(obj)

        db.commit()

        logger.info(f"Deleted {len(doomed)} message(s) under {message_id} in thread {thread_id}")
        return doomed

    @staticmethod
    def get_children(db: Session, message_id: int) -> List[Message]:
        """Children of a message, oldest first (ties broken by ID)."""
        return list(db.scalars(
            select(Message)
            .where(Message.parent_id == message_id)
            .order_by(Message.created_at, Message.id)
            .execution_options(populate_existing=True)
        ))

    @staticmethod
    def get_roots(db: Session, thread_id: UUID) -> List[Message]:
        """Root messages of a thread, oldest first (ties broken by ID)."""
        return list(db.scalars(
            select(Message)
            .where(Message.thread_id == thread_id, Message.parent_id.is_(None))
            .order_by(Message.created_at, Message.id)
            .execution_options(populate_existing=True)
        ))
