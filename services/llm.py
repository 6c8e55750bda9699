"""Model invocation through LangChain chat models."""
import base64
import os
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, AsyncIterator, Union, Tuple, Callable, Protocol
from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, SystemMessage, HumanMessage, AIMessage
import logging

from exceptions import ValidationError
from models.messages import MessageRole
from services.cancellation import CancellationHandle
from settings import PROVIDER_API_KEY_ENV

logger = logging.getLogger(__name__)

# Model name prefixes used to guess a provider when none is configured
MODEL_PREFIX_PROVIDERS = (
    ("gpt-", "openai"),
    ("chatgpt", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
    ("claude", "anthropic"),
    ("gemini", "google_genai"),
    ("mistral", "mistralai"),
)


@dataclass
class ChatTurn:
    """One transcript entry handed to the model."""
    role: MessageRole
    content: str
    images: List[Tuple[str, bytes]] = field(default_factory=list)  # (mime_type, data)


@dataclass
class InvocationOptions:
    provider_id: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)
    stream: bool = True
    supports_images: bool = True


@dataclass
class ModelReply:
    """A complete, non-streamed model answer."""
    content: str
    usage: Optional[Dict[str, Optional[int]]] = None


@dataclass
class ModelDelta:
    """One increment of a streamed model answer."""
    text: str
    usage: Optional[Dict[str, Optional[int]]] = None


class ModelInvoker(Protocol):
    """Interface of the model-calling collaborator."""

    def ensure_ready(self, model_id: str, provider_id: Optional[str]) -> None:
        ...

    async def invoke(
        self,
        transcript: List[ChatTurn],
        model_id: str,
        options: InvocationOptions,
        handle: Optional[CancellationHandle] = None
    ) -> Union[ModelReply, AsyncIterator[ModelDelta]]:
        ...


def infer_provider(model_id: str, provider_id: Optional[str] = None) -> Optional[str]:
    """Best guess of the LangChain provider serving ``model_id``."""
    if provider_id:
        return provider_id

    if ":" in model_id:
        return model_id.split(":", 1)[0]

    for prefix, provider in MODEL_PREFIX_PROVIDERS:
        if model_id.startswith(prefix):
            return provider

    return None


def content_text(content: Union[str, List[Any]]) -> str:
    """Flatten LangChain message content (string or content blocks) to text."""
    if isinstance(content, str):
        return content

    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def usage_from(message: BaseMessage) -> Optional[Dict[str, Optional[int]]]:
    usage = getattr(message, "usage_metadata", None)
    if not usage:
        return None

    return {
        "prompt_tokens": usage.get("input_tokens"),
        "completion_tokens": usage.get("output_tokens"),
        "total_tokens": usage.get("total_tokens"),
    }


def to_langchain_messages(
    transcript: List[ChatTurn],
    system_prompt: Optional[str] = None,
    supports_images: bool = True
) -> List[BaseMessage]:
    """Convert a transcript to LangChain messages, inlining images as data URLs."""
    messages: List[BaseMessage] = []

    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))

    for turn in transcript:
        if turn.role == MessageRole.ASSISTANT:
            messages.append(AIMessage(content=turn.content))
            continue

        if supports_images and turn.images:
            content = [{"type": "text", "text": turn.content}]
            for mime_type, data in turn.images:
                encoded = base64.b64encode(data).decode("ascii")
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{encoded}"}
                })
            messages.append(HumanMessage(content=content))
        else:
            messages.append(HumanMessage(content=turn.content))

    return messages


class LangChainModelInvoker:
    """Calls chat models created by ``init_chat_model``."""

    def __init__(self, model_factory: Callable[..., BaseChatModel] = init_chat_model):
        self.model_factory = model_factory

    def ensure_ready(self, model_id: str, provider_id: Optional[str]) -> None:
        """Raise ValidationError when the provider's API key is not configured."""
        provider = infer_provider(model_id, provider_id)
        env_var = PROVIDER_API_KEY_ENV.get(provider)

        if env_var and not os.getenv(env_var):
            raise ValidationError(f"Missing API key for provider '{provider}': set {env_var}")

    def build_model(self, model_id: str, options: InvocationOptions) -> BaseChatModel:
        kwargs = dict(options.extra_params or {})
        if options.max_tokens:
            kwargs["max_tokens"] = options.max_tokens
        if options.provider_id:
            kwargs["model_provider"] = options.provider_id

        return self.model_factory(model_id, **kwargs)

    async def invoke(
        self,
        transcript: List[ChatTurn],
        model_id: str,
        options: InvocationOptions,
        handle: Optional[CancellationHandle] = None
    ) -> Union[ModelReply, AsyncIterator[ModelDelta]]:
        model = self.build_model(model_id, options)
        messages = to_langchain_messages(transcript, options.system_prompt, options.supports_images)

        logger.info(f"Invoking {model_id} with {len(messages)} message(s), stream={options.stream}")

        if options.stream:
            return self._stream(model, messages, handle)

        response = await model.ainvoke(messages)
        return ModelReply(content=content_text(response.content), usage=usage_from(response))

    async def _stream(
        self,
        model: BaseChatModel,
        messages: List[BaseMessage],
        handle: Optional[CancellationHandle]
    ) -> AsyncIterator[ModelDelta]:
        async with aclosing(model.astream(messages)) as chunks:
            async for chunk in chunks:
                if handle is not None and handle.cancelled:
                    break

                text = content_text(chunk.content)
                usage = usage_from(chunk)
                if text or usage:
                    yield ModelDelta(text=text, usage=usage)
