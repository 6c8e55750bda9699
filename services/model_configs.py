"""Lookup of per-model flags (enabled, streaming, image input)."""
from typing import Optional, List
from sqlalchemy.orm import Session

from models.model_configs import ModelConfig
from schemas.model_configs import ModelConfigUpsert


class ModelConfigService:
    """Service class for model configuration rows."""

    @staticmethod
    def get_config(db: Session, provider_id: Optional[str], model_id: str) -> Optional[ModelConfig]:
        """
        Find the config of a model.

        When the provider is unknown any row for the model id matches,
        preferring the provider-less one.
        """
        query = db.query(ModelConfig).filter(ModelConfig.model_id == model_id)

        if provider_id:
            return query.filter(ModelConfig.provider_id == provider_id).first()

        return query.order_by(ModelConfig.provider_id != "", ModelConfig.id).first()

    @staticmethod
    def list_configs(db: Session) -> List[ModelConfig]:
        return db.query(ModelConfig).order_by(ModelConfig.provider_id, ModelConfig.model_id).all()

    @staticmethod
    def upsert_config(db: Session, config_data: ModelConfigUpsert) -> ModelConfig:
        """Create or replace the flags of a model."""
        config = db.query(ModelConfig).filter(
            ModelConfig.provider_id == config_data.provider_id,
            ModelConfig.model_id == config_data.model_id
        ).first()

        if config is None:
            config = ModelConfig(**config_data.model_dump())
            db.add(config)
        else:
            config.is_enabled = config_data.is_enabled
            config.enable_stream = config_data.enable_stream
            config.supports_images = config_data.supports_images

        db.commit()
        db.refresh(config)

        return config
