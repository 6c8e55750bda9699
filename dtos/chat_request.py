from pydantic import BaseModel, Base64Bytes, Field, ConfigDict
from typing import Optional, List
from uuid import UUID

from schemas.messages import AttachmentCreate
from schemas.thread_settings import ThreadSettingsUpdate


class AttachmentPayload(BaseModel):
    file_name: str
    mime_type: str = "application/octet-stream"
    data: Base64Bytes = Field(description="Base64-encoded file content")

    def to_attachment(self) -> AttachmentCreate:
        return AttachmentCreate(file_name=self.file_name, mime_type=self.mime_type, data=self.data)


class ChatRequest(BaseModel):
    thread_id: Optional[UUID] = Field(default=None, description="Existing thread; omit to start a new one")
    message: str = ""
    model_id: Optional[str] = None
    provider_id: Optional[str] = None
    stream: Optional[bool] = Field(default=None, description="Stream the reply; defaults to the model's configuration")
    parent_id: Optional[int] = Field(default=None, description="Parent message; omit to append to the active path, null for a new root")
    attachments: List[AttachmentPayload] = Field(default_factory=list)
    settings: Optional[ThreadSettingsUpdate] = Field(default=None, description="Settings for a newly created thread")

    model_config = ConfigDict(protected_namespaces=())


class RegenerateRequest(BaseModel):
    mode: str = Field(default="branch", pattern="^(regenerate|branch)$")
    model_id: Optional[str] = None
    provider_id: Optional[str] = None
    stream: Optional[bool] = None

    model_config = ConfigDict(protected_namespaces=())


class EditRequest(BaseModel):
    content: str
    mode: str = Field(default="save", pattern="^(save|regenerate|branch)$")
    model_id: Optional[str] = None
    provider_id: Optional[str] = None
    stream: Optional[bool] = None
    removed_file_ids: List[int] = Field(default_factory=list)
    new_files: List[AttachmentPayload] = Field(default_factory=list)

    model_config = ConfigDict(protected_namespaces=())


class BranchSwitchRequest(BaseModel):
    message_id: int
