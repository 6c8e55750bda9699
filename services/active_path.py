"""Resolution of a thread's active path through its message tree."""
from typing import Optional, List
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import select

from exceptions import NotFoundError
from models.threads import Thread
from models.messages import Message


class ActivePathResolver:
    """
    Derives the linear transcript currently shown for a thread.

    The walk starts at the active root and follows active-child pointers,
    falling back to the most recently created child where no pointer is
    set. Every step costs at most two single-row reads, so resolution is
    proportional to the depth of the path rather than the size of the
    thread. Nothing is cached between calls.
    """

    @staticmethod
    def get_active_path(db: Session, thread_id: UUID) -> List[Message]:
        """Messages from the thread's active root down to its active leaf."""
        thread = db.get(Thread, thread_id, populate_existing=True)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} not found")

        path = []
        current = ActivePathResolver._select_root(db, thread)
        while current is not None:
            path.append(current)
            current = ActivePathResolver._select_child(db, current)

        return path

    @staticmethod
    def get_active_leaf(db: Session, thread_id: UUID) -> Optional[Message]:
        path = ActivePathResolver.get_active_path(db, thread_id)
        return path[-1] if path else None

    @staticmethod
    def get_path_to(db: Session, message_id: int) -> List[Message]:
        """Ancestor chain from the root down to (and including) ``message_id``."""
        message = db.get(Message, message_id, populate_existing=True)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")

        path = [message]
        while message.parent_id is not None:
            message = db.get(Message, message.parent_id, populate_existing=True)
            path.append(message)

        path.reverse()
        return path

    @staticmethod
    def _select_root(db: Session, thread: Thread) -> Optional[Message]:
        if thread.active_root_id is not None:
            root = db.get(Message, thread.active_root_id, populate_existing=True)
            if root is not None and root.thread_id == thread.id and root.parent_id is None:
                return root

        return db.scalars(
            select(Message)
            .where(Message.thread_id == thread.id, Message.parent_id.is_(None))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()

    @staticmethod
    def _select_child(db: Session, message: Message) -> Optional[Message]:
        if message.active_child_id is not None:
            child = db.get(Message, message.active_child_id, populate_existing=True)
            if child is not None and child.parent_id == message.id:
                return child

        return db.scalars(
            select(Message)
            .where(Message.parent_id == message.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()
