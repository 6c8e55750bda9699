from .threads import Thread, Base
from .messages import Message, MessageRole
from .files import MessageFile
from .thread_settings import ThreadSettings
from .model_configs import ModelConfig

__all__ = ["Thread", "Message", "MessageRole", "MessageFile", "ThreadSettings", "ModelConfig", "Base"]
