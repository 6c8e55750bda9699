from fastapi import FastAPI, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse, JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from functools import partial
from dtos.chat_request import ChatRequest, RegenerateRequest, EditRequest, BranchSwitchRequest
from utils import create_sse_stream, to_send_response
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import UUID
import logging

# Local imports
from database import get_db, engine, SessionLocal
from exceptions import NotFoundError, ValidationError
from models import Base
from schemas import (
    ThreadCreate, ThreadUpdate, ThreadResponse,
    ThreadSettingsUpdate, ThreadSettingsResponse,
    MessageResponse, BranchInfoResponse,
    SendResponse, StopResponse, EditResponse, DeleteMessageResponse,
    ModelConfigUpsert, ModelConfigResponse
)
from services import (
    ThreadService, ThreadSettingsService, ModelConfigService, MessageService,
    ActivePathResolver, BranchService, ChatService, cancellation_registry
)
from services.llm import LangChainModelInvoker
from services.titles import InlineTitleGenerator, CeleryTitleGenerator
from settings import (
    ALLOWED_ORIGINS, LOG_LEVEL, DEFAULT_MODEL_ID, AUTO_GENERATE_TITLE,
    TITLE_GENERATION_PROVIDER, TITLE_GENERATION_MODEL, TITLE_GENERATION_BACKEND
)
from sqlalchemy.orm import Session
from sqlalchemy import text

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


def build_chat_service() -> ChatService:
    """Wire the chat orchestrator with the LangChain invoker and the configured title backend."""
    if TITLE_GENERATION_BACKEND == "celery":
        title_generator = CeleryTitleGenerator()
    else:
        title_generator = InlineTitleGenerator(SessionLocal)

    return ChatService(
        session_factory=SessionLocal,
        invoker=LangChainModelInvoker(),
        registry=cancellation_registry,
        title_generator=title_generator,
        auto_generate_title=AUTO_GENERATE_TITLE,
        title_provider_id=TITLE_GENERATION_PROVIDER,
        title_model_id=TITLE_GENERATION_MODEL,
        default_model_id=DEFAULT_MODEL_ID
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables if they don't exist
    Base.metadata.create_all(bind=engine)

    app.state.chat_service = build_chat_service()
    logger.info(f"Chat service ready (title backend: {TITLE_GENERATION_BACKEND})")

    yield

    await app.state.chat_service.wait_for_background_tasks()


app = FastAPI(
    title="Branching Chat",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if ALLOWED_ORIGINS != ["*"] else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
    max_age=3600
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def send_arguments(req: ChatRequest) -> dict:
    """Keyword arguments for ChatService.send; an omitted parent_id means the active leaf."""
    kwargs = {
        "stream": req.stream,
        "attachments": [a.to_attachment() for a in req.attachments],
        "draft_settings": req.settings,
        "provider_id": req.provider_id,
    }
    if "parent_id" in req.model_fields_set:
        kwargs["parent_id"] = req.parent_id
    return kwargs


def require_thread(db: Session, thread_id: UUID):
    thread = ThreadService.get_thread(db, thread_id)
    if not thread:
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


@app.get("/")
async def root():
    return {"message": "Hello World", "status": "running"}


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check including database connectivity."""
    health_status = {"status": "healthy", "service": "branching-chat", "checks": {}}

    try:
        db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = {"status": "healthy"}
    except Exception as e:
        health_status["checks"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "unhealthy"

    health_status["checks"]["generations"] = {"in_flight": len(cancellation_registry.active_threads())}
    return health_status


# Chat endpoints
@app.post("/chat", response_model=SendResponse)
async def chat(
    req: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service)
) -> SendResponse:
    """Send a message and wait for the complete reply."""
    result = await chat_service.send(req.thread_id, req.message, req.model_id, **send_arguments(req))
    return to_send_response(result)


@app.post("/chat/stream")
async def chat_stream(
    req: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service)
):
    """Send a message and stream the reply as server-sent events."""
    operation = partial(chat_service.send, req.thread_id, req.message, req.model_id, **send_arguments(req))

    return StreamingResponse(
        create_sse_stream(operation),
        media_type="text/event-stream"
    )


# Thread management endpoints
@app.post("/threads", response_model=ThreadResponse)
async def create_thread(
    thread: ThreadCreate,
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """Create a new conversation thread."""
    db_thread = ThreadService.create_thread(db=db, thread_data=thread)
    return ThreadResponse.model_validate(db_thread)


@app.get("/threads", response_model=List[ThreadResponse])
async def list_threads(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
) -> List[ThreadResponse]:
    """List threads, most recently active first."""
    threads = ThreadService.list_threads(db=db, skip=skip, limit=limit)
    return [ThreadResponse.model_validate(thread) for thread in threads]


@app.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: UUID,
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """Get a specific thread by ID."""
    return ThreadResponse.model_validate(require_thread(db, thread_id))


@app.patch("/threads/{thread_id}", response_model=ThreadResponse)
async def update_thread(
    thread_id: UUID,
    thread_update: ThreadUpdate,
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """Rename a thread."""
    updated_thread = ThreadService.update_thread(db=db, thread_id=thread_id, thread_update=thread_update)

    if not updated_thread:
        raise HTTPException(status_code=404, detail="Thread not found")

    return ThreadResponse.model_validate(updated_thread)


@app.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: UUID,
    db: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service)
) -> dict:
    """Delete a thread with all of its messages."""
    chat_service.stop(thread_id)
    deleted = ThreadService.delete_thread(db=db, thread_id=thread_id)

    if not deleted:
        raise HTTPException(status_code=404, detail="Thread not found")

    return {"message": "Thread deleted successfully"}


@app.get("/threads/{thread_id}/settings", response_model=ThreadSettingsResponse)
async def get_thread_settings(
    thread_id: UUID,
    db: Session = Depends(get_db)
) -> ThreadSettingsResponse:
    """Get a thread's generation settings (all empty when never configured)."""
    require_thread(db, thread_id)
    settings = ThreadSettingsService.get_settings(db, thread_id)

    if settings is None:
        return ThreadSettingsResponse(
            thread_id=thread_id, provider_id=None, model_id=None, system_prompt=None,
            context_window=None, max_tokens=None, extra_params=None
        )

    return ThreadSettingsResponse.model_validate(settings)


@app.put("/threads/{thread_id}/settings", response_model=ThreadSettingsResponse)
async def update_thread_settings(
    thread_id: UUID,
    settings_update: ThreadSettingsUpdate,
    db: Session = Depends(get_db)
) -> ThreadSettingsResponse:
    """Create or update a thread's generation settings."""
    require_thread(db, thread_id)
    settings = ThreadSettingsService.upsert_settings(db, thread_id, settings_update)
    return ThreadSettingsResponse.model_validate(settings)


@app.delete("/threads/{thread_id}/settings")
async def reset_thread_settings(
    thread_id: UUID,
    db: Session = Depends(get_db)
) -> dict:
    """Drop a thread's settings so requests fall back to their own model."""
    require_thread(db, thread_id)
    deleted = ThreadSettingsService.delete_settings(db, thread_id)
    return {"deleted": deleted}


@app.get("/threads/{thread_id}/messages", response_model=List[MessageResponse])
async def get_active_path(
    thread_id: UUID,
    db: Session = Depends(get_db)
) -> List[MessageResponse]:
    """Messages of the thread's active path, root first."""
    messages = ActivePathResolver.get_active_path(db, thread_id)
    return [MessageResponse.model_validate(m) for m in messages]


@app.post("/threads/{thread_id}/branch", response_model=List[MessageResponse])
async def switch_branch(
    thread_id: UUID,
    req: BranchSwitchRequest,
    db: Session = Depends(get_db)
) -> List[MessageResponse]:
    """Switch the active branch and return the new active path."""
    BranchService.switch_branch(db, thread_id, req.message_id)
    messages = ActivePathResolver.get_active_path(db, thread_id)
    return [MessageResponse.model_validate(m) for m in messages]


@app.post("/threads/{thread_id}/stop", response_model=StopResponse)
async def stop_generation(
    thread_id: UUID,
    chat_service: ChatService = Depends(get_chat_service)
) -> StopResponse:
    """Stop the thread's in-flight generation, if any."""
    return StopResponse(thread_id=thread_id, stopped=chat_service.stop(thread_id))


# Message endpoints
@app.get("/messages/{message_id}/branches", response_model=BranchInfoResponse)
async def get_branch_info(
    message_id: int,
    db: Session = Depends(get_db)
) -> BranchInfoResponse:
    """Siblings of a message and its position among them."""
    info = BranchService.get_branch_info(db, message_id)
    return BranchInfoResponse(
        message_id=message_id,
        current=info.current,
        total=info.total,
        sibling_ids=[sibling.id for sibling in info.siblings]
    )


@app.patch("/messages/{message_id}", response_model=EditResponse)
async def edit_message(
    message_id: int,
    req: EditRequest,
    db: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service)
) -> EditResponse:
    """Edit a message in place, or as a new branch."""
    result = await chat_service.edit_message(
        message_id,
        req.content,
        mode=req.mode,
        model_id=req.model_id,
        removed_file_ids=req.removed_file_ids,
        new_files=[f.to_attachment() for f in req.new_files],
        provider_id=req.provider_id,
        stream=req.stream
    )

    if result is None:
        message = MessageService.get_message(db, message_id)
        return EditResponse(message=MessageResponse.model_validate(message))

    return EditResponse(result=to_send_response(result))


@app.post("/messages/{message_id}/regenerate", response_model=SendResponse)
async def regenerate_message(
    message_id: int,
    req: Optional[RegenerateRequest] = None,
    chat_service: ChatService = Depends(get_chat_service)
) -> SendResponse:
    """Generate a new reply, replacing the old one or branching beside it."""
    req = req or RegenerateRequest()
    result = await chat_service.regenerate(
        message_id,
        mode=req.mode,
        model_id=req.model_id,
        provider_id=req.provider_id,
        stream=req.stream
    )
    return to_send_response(result)


@app.delete("/messages/{message_id}", response_model=DeleteMessageResponse)
async def delete_message(
    message_id: int,
    db: Session = Depends(get_db)
) -> DeleteMessageResponse:
    """Delete a message and everything below it."""
    message = MessageService.get_message(db, message_id)

    if not message:
        raise HTTPException(status_code=404, detail="Message not found")

    deleted_ids = MessageService.delete_subtree(db, message.thread_id, message_id)
    return DeleteMessageResponse(deleted_ids=deleted_ids)


# Model configuration endpoints
@app.get("/models/config", response_model=List[ModelConfigResponse])
async def list_model_configs(db: Session = Depends(get_db)) -> List[ModelConfigResponse]:
    return [ModelConfigResponse.model_validate(c) for c in ModelConfigService.list_configs(db)]


@app.put("/models/config", response_model=ModelConfigResponse)
async def upsert_model_config(
    config: ModelConfigUpsert,
    db: Session = Depends(get_db)
) -> ModelConfigResponse:
    """Enable, disable or reconfigure a model."""
    return ModelConfigResponse.model_validate(ModelConfigService.upsert_config(db, config))
