"""Pydantic schemas for thread-related requests and responses."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID


class ThreadCreate(BaseModel):
    """Schema for creating a thread."""
    title: Optional[str] = Field(default="New Chat", max_length=255)


class ThreadUpdate(BaseModel):
    """Schema for updating a thread."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)


class ThreadResponse(BaseModel):
    """Schema for thread responses."""
    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
