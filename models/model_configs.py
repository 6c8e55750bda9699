"""Per-model capability flags."""
from sqlalchemy import Column, String, Integer, Boolean, UniqueConstraint
from .threads import Base


class ModelConfig(Base):
    """
    User preferences for one model of one provider.

    A model without a row is treated as enabled, streaming and image capable.
    """
    __tablename__ = "model_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(255), nullable=False, default="")
    model_id = Column(String(255), nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
    enable_stream = Column(Boolean, nullable=False, default=True)
    supports_images = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("provider_id", "model_id", name="uq_model_configs_provider_model"),
    )
