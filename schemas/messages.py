"""Pydantic schemas for messages, attachments and branch information."""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID

from models.messages import MessageRole


class AttachmentCreate(BaseModel):
    """A file to attach to a new or edited message."""
    file_name: str
    mime_type: str = "application/octet-stream"
    data: bytes


class FileResponse(BaseModel):
    """Schema for attachment metadata responses."""
    id: int
    file_name: str
    mime_type: str
    size: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    """Schema for message responses."""
    id: int
    thread_id: UUID
    parent_id: Optional[int]
    role: MessageRole
    content: str
    model: Optional[str]
    is_error: bool
    prompt_tokens: Optional[int]
    completion_tokens: Optional[int]
    total_tokens: Optional[int]
    created_at: datetime
    files: List[FileResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class BranchInfoResponse(BaseModel):
    """Sibling set of a message and its 1-based position within it."""
    message_id: int
    current: int
    total: int
    sibling_ids: List[int]
