from .threads import ThreadService
from .thread_settings import ThreadSettingsService
from .model_configs import ModelConfigService
from .files import FileService
from .messages import MessageService
from .active_path import ActivePathResolver
from .branches import BranchService, BranchInfo
from .cancellation import CancellationRegistry, CancellationHandle, cancellation_registry
from .chat import ChatService, SendResult, SendState, RegenerateMode, EditMode, ACTIVE_LEAF

__all__ = ["ThreadService", "ThreadSettingsService", "ModelConfigService", "FileService",
           "MessageService", "ActivePathResolver", "BranchService", "BranchInfo",
           "CancellationRegistry", "CancellationHandle", "cancellation_registry",
           "ChatService", "SendResult", "SendState", "RegenerateMode", "EditMode", "ACTIVE_LEAF"]
