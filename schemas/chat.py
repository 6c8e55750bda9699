"""Pydantic schemas for chat operation results."""
from typing import Optional, List
from pydantic import BaseModel
from uuid import UUID

from .messages import MessageResponse


class SendResponse(BaseModel):
    """Outcome of a send, regenerate or edit-as-branch request."""
    thread_id: UUID
    state: str
    is_new_thread: bool
    user_message_id: Optional[int] = None
    assistant_message_id: Optional[int] = None
    error: Optional[str] = None


class StopResponse(BaseModel):
    thread_id: UUID
    stopped: bool


class EditResponse(BaseModel):
    """Result of an edit: the saved message, or the outcome of the generation it started."""
    message: Optional[MessageResponse] = None
    result: Optional[SendResponse] = None


class DeleteMessageResponse(BaseModel):
    deleted_ids: List[int]
