"""Pydantic schemas for per-thread generation settings."""
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from uuid import UUID


class ThreadSettingsUpdate(BaseModel):
    """
    Partial generation configuration.

    Used both for drafts held before a thread exists and for updates of a
    persisted thread's settings. Only fields that were explicitly set are
    applied on update.
    """
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    system_prompt: Optional[str] = None
    context_window: Optional[int] = Field(default=None, ge=1)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    extra_params: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(protected_namespaces=())


class ThreadSettingsResponse(BaseModel):
    """Schema for thread settings responses."""
    thread_id: UUID
    provider_id: Optional[str]
    model_id: Optional[str]
    system_prompt: Optional[str]
    context_window: Optional[int]
    max_tokens: Optional[int]
    extra_params: Optional[Dict[str, Any]]

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())
