"""Pydantic schemas for model configuration."""
from pydantic import BaseModel, ConfigDict


class ModelConfigUpsert(BaseModel):
    """Schema for creating or replacing a model's flags."""
    provider_id: str = ""
    model_id: str
    is_enabled: bool = True
    enable_stream: bool = True
    supports_images: bool = True

    model_config = ConfigDict(protected_namespaces=())


class ModelConfigResponse(ModelConfigUpsert):
    id: int

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())
