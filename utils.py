"""Server-sent event helpers for streaming chat replies."""
import asyncio
import contextlib
import json
from typing import AsyncIterator, Awaitable, Callable, Optional, Any
from uuid import UUID
import logging

from exceptions import ChatError
from schemas.chat import SendResponse
from services.chat import SendResult

logger = logging.getLogger(__name__)


def to_send_response(result: SendResult) -> SendResponse:
    return SendResponse(
        thread_id=result.thread_id,
        state=result.state.value,
        is_new_thread=result.is_new_thread,
        user_message_id=result.user_message_id,
        assistant_message_id=result.assistant_message_id,
        error=str(result.error) if result.error is not None else None
    )


def sse_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def create_sse_stream(operation: Callable[..., Awaitable[Optional[SendResult]]]) -> AsyncIterator[str]:
    """
    Run a chat operation and relay its progress as SSE events.

    ``operation`` is called with ``on_user_message_saved`` and ``on_delta``
    keyword arguments. Emits ``user_message_saved``, ``delta`` and finally
    ``done`` or ``error``. When the client disconnects the operation task is
    cancelled, which aborts the generation without persisting a reply.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def on_user_message_saved(thread_id: UUID, message_id: Optional[int]) -> None:
        await queue.put(sse_event("user_message_saved", {"thread_id": str(thread_id), "message_id": message_id}))

    async def on_delta(text: str) -> None:
        await queue.put(sse_event("delta", {"text": text}))

    async def run() -> None:
        try:
            result = await operation(on_user_message_saved=on_user_message_saved, on_delta=on_delta)
            payload = to_send_response(result).model_dump(mode="json") if result is not None else {}
            await queue.put(sse_event("done", payload))
        except ChatError as e:
            await queue.put(sse_event("error", {"detail": str(e)}))
        except Exception as e:
            logger.error(f"Streaming chat operation failed: {e}")
            await queue.put(sse_event("error", {"detail": "Internal server error"}))
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    try:
        while True:
            item = await queue.get()
            if item is None:
                break
            yield item
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
