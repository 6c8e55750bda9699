"""
Send/stream orchestration for branching conversations.

A send request moves through an explicit state machine::

    IDLE -> THREAD_ENSURED -> USER_MESSAGE_PERSISTED -> GENERATING -> FINALIZED
                                                             |
                                                             +-> ABORTED

At most one generation per thread is in flight: starting a new one
pre-empts the previous through the cancellation registry. A pre-empted or
stopped generation writes nothing. A failing model call is recorded as an
assistant message flagged ``is_error`` so the transcript shows the failure.
"""
import asyncio
import enum
import inspect
from dataclasses import dataclass, field
from typing import Optional, List, Callable, Any, Iterable, Sequence, Set, Tuple, Dict, Union
from uuid import UUID
from sqlalchemy.orm import Session
import logging

from exceptions import ValidationError, NotFoundError, CancellationError, GenerationError
from models.messages import Message, MessageRole
from schemas.messages import AttachmentCreate
from schemas.threads import ThreadCreate
from schemas.thread_settings import ThreadSettingsUpdate
from services.active_path import ActivePathResolver
from services.branches import BranchService, BranchInfo
from services.cancellation import CancellationRegistry, CancellationHandle, cancellation_registry
from services.files import FileService
from services.llm import ChatTurn, InvocationOptions, ModelInvoker, ModelReply
from services.messages import MessageService
from services.model_configs import ModelConfigService
from services.thread_settings import ThreadSettingsService
from services.threads import ThreadService

logger = logging.getLogger(__name__)

TITLE_SEED_LENGTH = 20
DEFAULT_THREAD_TITLE = "New Chat"


class _ActiveLeaf:
    def __repr__(self) -> str:
        return "ACTIVE_LEAF"


# Default parent for a send: the thread's current active leaf
ACTIVE_LEAF = _ActiveLeaf()


class SendState(enum.Enum):
    IDLE = "idle"
    THREAD_ENSURED = "thread_ensured"
    USER_MESSAGE_PERSISTED = "user_message_persisted"
    GENERATING = "generating"
    FINALIZED = "finalized"
    ABORTED = "aborted"


class RegenerateMode(enum.Enum):
    REPLACE = "regenerate"  # delete the old continuation, then resend
    BRANCH = "branch"  # resend alongside the old continuation


class EditMode(enum.Enum):
    SAVE = "save"
    REGENERATE = "regenerate"
    BRANCH = "branch"


@dataclass
class SendResult:
    """Outcome of a send. ``error`` is set when the model call failed."""
    thread_id: UUID
    state: SendState
    is_new_thread: bool = False
    user_message_id: Optional[int] = None
    assistant_message_id: Optional[int] = None
    error: Optional[GenerationError] = None


@dataclass
class GenerationTarget:
    """Model and options resolved for one generation."""
    model_id: str
    provider_id: Optional[str] = None
    system_prompt: Optional[str] = None
    context_window: Optional[int] = None
    max_tokens: Optional[int] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)
    stream: bool = True
    supports_images: bool = True


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class ChatService:
    """Top-level chat use cases: send, stop, regenerate, edit and branch navigation."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        invoker: ModelInvoker,
        registry: Optional[CancellationRegistry] = None,
        title_generator: Optional[Any] = None,
        auto_generate_title: bool = False,
        title_provider_id: Optional[str] = None,
        title_model_id: Optional[str] = None,
        default_model_id: Optional[str] = None
    ):
        self.session_factory = session_factory
        self.invoker = invoker
        self.registry = registry if registry is not None else cancellation_registry
        self.title_generator = title_generator
        self.auto_generate_title = auto_generate_title
        self.title_provider_id = title_provider_id
        self.title_model_id = title_model_id
        self.default_model_id = default_model_id
        self._background_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(
        self,
        thread_id: Optional[UUID],
        text: str,
        model_id: Optional[str],
        *,
        stream: Optional[bool] = None,
        attachments: Iterable[AttachmentCreate] = (),
        parent_id: Union[int, None, _ActiveLeaf] = ACTIVE_LEAF,
        is_regenerate: bool = False,
        on_user_message_saved: Optional[Callable[[UUID, Optional[int]], Any]] = None,
        on_delta: Optional[Callable[[str], Any]] = None,
        draft_settings: Optional[ThreadSettingsUpdate] = None,
        provider_id: Optional[str] = None
    ) -> SendResult:
        """
        Persist a user message (unless regenerating) and generate the reply.

        Args:
            thread_id: Target thread, or None to create one
            text: User message text
            model_id: Requested model; thread settings take precedence
            stream: Stream the reply; defaults to the model's configuration
            attachments: Files stored with the user message
            parent_id: Parent of the user message. ACTIVE_LEAF (default)
                appends to the active path, None starts a new root. For a
                regenerate this is the message the reply is generated for.
            is_regenerate: Skip the user message and generate a new reply
                under ``parent_id``
            on_user_message_saved: Called with (thread_id, message_id) once
                the user message is stored, before the model is called
            on_delta: Called with every streamed text increment
            draft_settings: Settings stored with a newly created thread
            provider_id: Requested provider; thread settings take precedence

        Returns:
            SendResult with the final state of the request

        Raises:
            ValidationError: Malformed request (nothing is persisted)
            NotFoundError: Unknown thread
        """
        text = text or ""
        attachments = list(attachments or ())

        if not is_regenerate and not text.strip() and not attachments:
            raise ValidationError("Cannot send an empty message")
        if is_regenerate and thread_id is None:
            raise ValidationError("Regenerate requires an existing thread")
        for attachment in attachments:
            FileService.validate_attachment(attachment)

        db = self.session_factory()
        try:
            return await self._send(
                db, thread_id, text, model_id, stream, attachments, parent_id,
                is_regenerate, on_user_message_saved, on_delta, draft_settings, provider_id
            )
        finally:
            db.close()

    async def _send(
        self,
        db: Session,
        thread_id: Optional[UUID],
        text: str,
        model_id: Optional[str],
        stream: Optional[bool],
        attachments: List[AttachmentCreate],
        parent_id: Union[int, None, _ActiveLeaf],
        is_regenerate: bool,
        on_user_message_saved: Optional[Callable[[UUID, Optional[int]], Any]],
        on_delta: Optional[Callable[[str], Any]],
        draft_settings: Optional[ThreadSettingsUpdate],
        provider_id: Optional[str]
    ) -> SendResult:
        # Validation: nothing below may write before this block completes
        thread = None
        settings_row = None
        if thread_id is not None:
            thread = ThreadService.get_thread(db, thread_id)
            if thread is None:
                raise NotFoundError(f"Thread {thread_id} not found")
            settings_row = ThreadSettingsService.get_settings(db, thread_id)

        target = self.resolve_target(
            db, settings_row if thread is not None else draft_settings, model_id, provider_id, stream
        )
        anchor_id = self._resolve_anchor(db, thread.id if thread is not None else None, parent_id)
        if is_regenerate and anchor_id is None:
            raise ValidationError("Nothing to regenerate from")

        is_new_thread = thread is None
        if is_new_thread:
            thread = ThreadService.create_thread(
                db, ThreadCreate(title=self.seed_title(text)), settings=draft_settings
            )
        thread_id = thread.id

        result = SendResult(thread_id=thread_id, state=SendState.THREAD_ENSURED, is_new_thread=is_new_thread)
        handle = self.registry.begin_generation(thread_id)
        try:
            if is_regenerate:
                MessageService.mark_active(db, MessageService.get_message(db, anchor_id))
            else:
                user_message = MessageService.create_message(
                    db, thread_id, anchor_id, MessageRole.USER, text, attachments=attachments
                )
                anchor_id = user_message.id
                result.user_message_id = user_message.id
            result.state = SendState.USER_MESSAGE_PERSISTED

            if on_user_message_saved is not None:
                await _maybe_await(on_user_message_saved(thread_id, anchor_id))

            result.state = SendState.GENERATING
            await self._generate_reply(db, result, anchor_id, target, handle, on_delta)
        finally:
            self.registry.end_generation(thread_id, handle)

        if result.state == SendState.FINALIZED and is_new_thread:
            self._schedule_title_generation(thread_id)

        return result

    async def _generate_reply(
        self,
        db: Session,
        result: SendResult,
        anchor_id: int,
        target: GenerationTarget,
        handle: CancellationHandle,
        on_delta: Optional[Callable[[str], Any]]
    ) -> None:
        transcript = self.build_transcript(db, anchor_id, target)

        try:
            content, usage = await self._generate(transcript, target, handle, on_delta)
        except CancellationError as exc:
            logger.info(f"Generation for thread {result.thread_id} aborted ({exc.reason}); partial output discarded")
            result.state = SendState.ABORTED
            return
        except asyncio.CancelledError:
            handle.cancel("task cancelled")
            raise
        except Exception as exc:
            if handle.cancelled:
                logger.info(f"Generation for thread {result.thread_id} failed after cancellation: {exc}")
                result.state = SendState.ABORTED
                return

            error = GenerationError(str(exc) or type(exc).__name__)
            error.__cause__ = exc
            logger.error(f"Generation failed for thread {result.thread_id} with {target.model_id}: {error}")

            error_message = MessageService.create_message(
                db, result.thread_id, anchor_id, MessageRole.ASSISTANT,
                f"An error occurred: {error}", model=target.model_id, is_error=True
            )
            result.assistant_message_id = error_message.id
            result.error = error
            result.state = SendState.FINALIZED
            return

        if handle.cancelled:
            result.state = SendState.ABORTED
            return

        assistant_message = MessageService.create_message(
            db, result.thread_id, anchor_id, MessageRole.ASSISTANT, content,
            model=target.model_id, usage=usage
        )
        result.assistant_message_id = assistant_message.id
        result.state = SendState.FINALIZED
        logger.info(f"Stored reply {assistant_message.id} in thread {result.thread_id}")

    async def _generate(
        self,
        transcript: List[ChatTurn],
        target: GenerationTarget,
        handle: CancellationHandle,
        on_delta: Optional[Callable[[str], Any]]
    ) -> Tuple[str, Optional[Dict[str, Optional[int]]]]:
        handle.raise_if_cancelled()

        options = InvocationOptions(
            provider_id=target.provider_id,
            system_prompt=target.system_prompt,
            max_tokens=target.max_tokens,
            extra_params=dict(target.extra_params),
            stream=target.stream,
            supports_images=target.supports_images
        )
        response = await self.invoker.invoke(transcript, target.model_id, options, handle)
        handle.raise_if_cancelled()

        if isinstance(response, ModelReply):
            if on_delta is not None and response.content:
                await _maybe_await(on_delta(response.content))
            return response.content, response.usage

        parts = []
        usage = None
        try:
            async for delta in response:
                handle.raise_if_cancelled()
                parts.append(delta.text)
                if delta.usage:
                    usage = delta.usage
                if on_delta is not None and delta.text:
                    await _maybe_await(on_delta(delta.text))
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                await aclose()

        handle.raise_if_cancelled()
        return "".join(parts), usage

    def stop(self, thread_id: UUID) -> bool:
        """Cancel the thread's in-flight generation, if any."""
        return self.registry.cancel(thread_id)

    # ------------------------------------------------------------------
    # Regenerate / edit
    # ------------------------------------------------------------------

    async def regenerate(
        self,
        message_id: int,
        mode: Union[RegenerateMode, str] = RegenerateMode.BRANCH,
        model_id: Optional[str] = None,
        **send_options: Any
    ) -> SendResult:
        """
        Generate a new reply for a message.

        For a user message the reply is generated under the message itself;
        for an assistant message under its parent. REPLACE first deletes the
        old continuation (the user message's children, or the assistant
        message's own subtree); BRANCH keeps it as a sibling.
        """
        mode = RegenerateMode(mode)

        db = self.session_factory()
        try:
            message = MessageService.get_message(db, message_id)
            if message is None:
                raise NotFoundError(f"Message {message_id} not found")
            thread_id = message.thread_id

            if message.role == MessageRole.USER:
                anchor_id = message.id
            elif message.parent_id is None:
                raise ValidationError(f"Message {message_id} has no parent to regenerate from")
            else:
                anchor_id = message.parent_id

            self.resolve_target(
                db, ThreadSettingsService.get_settings(db, thread_id), model_id,
                send_options.get("provider_id"), send_options.get("stream")
            )

            if mode == RegenerateMode.REPLACE:
                self.registry.cancel(thread_id)
                if message.role == MessageRole.USER:
                    for child in MessageService.get_children(db, message.id):
                        MessageService.delete_subtree(db, thread_id, child.id)
                else:
                    MessageService.delete_subtree(db, thread_id, message.id)
        finally:
            db.close()

        return await self.send(
            thread_id, "", model_id, parent_id=anchor_id, is_regenerate=True, **send_options
        )

    async def edit_message(
        self,
        message_id: int,
        content: str,
        mode: Union[EditMode, str] = EditMode.SAVE,
        model_id: Optional[str] = None,
        removed_file_ids: Sequence[int] = (),
        new_files: Iterable[AttachmentCreate] = (),
        **send_options: Any
    ) -> Optional[SendResult]:
        """
        Edit a message.

        SAVE changes content in place. REGENERATE (user messages) changes
        content in place and replaces the reply. BRANCH leaves the original
        untouched and adds an edited sibling: for a user message a reply is
        generated for the new sibling, for an assistant message the sibling
        is stored as is.
        """
        mode = EditMode(mode)
        new_files = list(new_files)

        db = self.session_factory()
        try:
            message = MessageService.get_message(db, message_id)
            if message is None:
                raise NotFoundError(f"Message {message_id} not found")

            if mode == EditMode.SAVE:
                MessageService.update_content(db, message_id, content, removed_file_ids, new_files)
                return None

            if mode == EditMode.BRANCH and message.role == MessageRole.ASSISTANT:
                sibling = MessageService.create_message(
                    db, message.thread_id, message.parent_id, MessageRole.ASSISTANT, content, model=message.model
                )
                return SendResult(
                    thread_id=message.thread_id, state=SendState.FINALIZED, assistant_message_id=sibling.id
                )

            if message.role != MessageRole.USER:
                raise ValidationError("Only user messages can be edited and regenerated")

            thread_id = message.thread_id
            parent_id = message.parent_id

            if mode == EditMode.REGENERATE:
                self.resolve_target(
                    db, ThreadSettingsService.get_settings(db, thread_id), model_id,
                    send_options.get("provider_id"), send_options.get("stream")
                )
                MessageService.update_content(db, message_id, content, removed_file_ids, new_files)
            else:
                removed = set(removed_file_ids)
                kept = FileService.to_attachments(
                    f for f in FileService.list_message_files(db, message_id) if f.id not in removed
                )
        finally:
            db.close()

        if mode == EditMode.REGENERATE:
            return await self.regenerate(message_id, RegenerateMode.REPLACE, model_id, **send_options)

        return await self.send(
            thread_id, content, model_id, parent_id=parent_id, attachments=kept + new_files, **send_options
        )

    # ------------------------------------------------------------------
    # Reads and branch navigation
    # ------------------------------------------------------------------

    def get_active_path(self, thread_id: UUID) -> List[Message]:
        db = self.session_factory()
        try:
            return ActivePathResolver.get_active_path(db, thread_id)
        finally:
            db.close()

    def get_branch_info(self, message_id: int) -> BranchInfo:
        db = self.session_factory()
        try:
            return BranchService.get_branch_info(db, message_id)
        finally:
            db.close()

    def switch_branch(self, thread_id: UUID, message_id: int) -> Message:
        db = self.session_factory()
        try:
            return BranchService.switch_branch(db, thread_id, message_id)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def seed_title(text: str) -> str:
        """Provisional title of a new thread, replaced later by title generation."""
        return text.strip()[:TITLE_SEED_LENGTH] or DEFAULT_THREAD_TITLE

    def resolve_target(
        self,
        db: Session,
        settings: Optional[Any],
        model_id: Optional[str],
        provider_id: Optional[str],
        stream: Optional[bool]
    ) -> GenerationTarget:
        """
        Combine thread (or draft) settings with the request into a generation target.

        Raises:
            ValidationError: No model, a disabled model, or missing credentials
        """
        effective_model = (settings.model_id if settings is not None else None) or model_id or self.default_model_id
        if not effective_model:
            raise ValidationError("No model selected")
        effective_provider = (settings.provider_id if settings is not None else None) or provider_id

        config = ModelConfigService.get_config(db, effective_provider, effective_model)
        if config is not None and not config.is_enabled:
            raise ValidationError(f"Model {effective_model} is disabled")

        self.invoker.ensure_ready(effective_model, effective_provider)

        if stream is None:
            stream = config.enable_stream if config is not None else True

        return GenerationTarget(
            model_id=effective_model,
            provider_id=effective_provider,
            system_prompt=settings.system_prompt if settings is not None else None,
            context_window=settings.context_window if settings is not None else None,
            max_tokens=settings.max_tokens if settings is not None else None,
            extra_params=dict((settings.extra_params if settings is not None else None) or {}),
            stream=stream,
            supports_images=config.supports_images if config is not None else True
        )

    def _resolve_anchor(
        self,
        db: Session,
        thread_id: Optional[UUID],
        parent_id: Union[int, None, _ActiveLeaf]
    ) -> Optional[int]:
        if parent_id is ACTIVE_LEAF:
            if thread_id is None:
                return None
            leaf = ActivePathResolver.get_active_leaf(db, thread_id)
            return leaf.id if leaf is not None else None

        if parent_id is None:
            return None

        parent = MessageService.get_message(db, parent_id)
        if parent is None or thread_id is None or parent.thread_id != thread_id:
            raise ValidationError(f"Parent message {parent_id} does not belong to thread {thread_id}")
        return parent.id

    def build_transcript(self, db: Session, anchor_id: int, target: GenerationTarget) -> List[ChatTurn]:
        """Ancestor chain of the anchor as model input, bounded by the context window."""
        history = [m for m in ActivePathResolver.get_path_to(db, anchor_id) if not m.is_error]
        if target.context_window and len(history) > target.context_window:
            history = history[-target.context_window:]

        transcript = []
        for message in history:
            images = []
            if target.supports_images:
                images = [
                    (f.mime_type, f.blob)
                    for f in FileService.list_message_files(db, message.id)
                    if f.mime_type.startswith("image/")
                ]
            transcript.append(ChatTurn(role=message.role, content=message.content, images=images))

        return transcript

    def _schedule_title_generation(self, thread_id: UUID) -> None:
        if not (self.auto_generate_title and self.title_generator is not None and self.title_model_id):
            return

        task = asyncio.get_running_loop().create_task(self._generate_title(thread_id))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _generate_title(self, thread_id: UUID) -> None:
        try:
            await asyncio.to_thread(
                self.title_generator.generate_title, thread_id, self.title_provider_id, self.title_model_id
            )
        except Exception as exc:
            logger.warning(f"Title generation failed for thread {thread_id}: {exc}")

    async def wait_for_background_tasks(self) -> None:
        """Wait for detached work such as title generation to settle."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)
