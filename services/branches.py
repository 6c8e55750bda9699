"""Branch registry: sibling sets and branch switching."""
from dataclasses import dataclass
from typing import List
from uuid import UUID
from sqlalchemy.orm import Session
import logging

from exceptions import NotFoundError
from models.messages import Message
from services.messages import MessageService

logger = logging.getLogger(__name__)


@dataclass
class BranchInfo:
    """Siblings of a message and the message's 1-based position among them."""
    siblings: List[Message]
    current: int
    total: int


class BranchService:
    """Service class for branch navigation."""

    @staticmethod
    def get_branch_info(db: Session, message_id: int) -> BranchInfo:
        """
        Describe the alternatives to a message.

        Siblings are the children of the message's parent. Root messages are
        siblings of the other roots of their thread.
        """
        message = MessageService.get_message(db, message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")

        if message.parent_id is None:
            siblings = MessageService.get_roots(db, message.thread_id)
        else:
            siblings = MessageService.get_children(db, message.parent_id)

        current = next(i for i, sibling in enumerate(siblings, start=1) if sibling.id == message.id)
        return BranchInfo(siblings=siblings, current=current, total=len(siblings))

    @staticmethod
    def switch_branch(db: Session, thread_id: UUID, target_message_id: int) -> Message:
        """Make ``target_message_id`` the active child of its parent. Creates and deletes nothing."""
        target = MessageService.get_message(db, target_message_id)
        if target is None or target.thread_id != thread_id:
            raise NotFoundError(f"Message {target_message_id} not found in thread {thread_id}")

        MessageService.mark_active(db, target)

        logger.info(f"Switched thread {thread_id} to branch {target_message_id}")
        return target
