from .threads import ThreadCreate, ThreadUpdate, ThreadResponse
from .thread_settings import ThreadSettingsUpdate, ThreadSettingsResponse
from .messages import AttachmentCreate, FileResponse, MessageResponse, BranchInfoResponse
from .chat import SendResponse, StopResponse, EditResponse, DeleteMessageResponse
from .model_configs import ModelConfigUpsert, ModelConfigResponse

__all__ = ["ThreadCreate", "ThreadUpdate", "ThreadResponse",
           "ThreadSettingsUpdate", "ThreadSettingsResponse",
           "AttachmentCreate", "FileResponse", "MessageResponse", "BranchInfoResponse",
           "SendResponse", "StopResponse", "EditResponse", "DeleteMessageResponse",
           "ModelConfigUpsert", "ModelConfigResponse"]
