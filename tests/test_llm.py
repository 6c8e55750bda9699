import base64
import uuid

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from exceptions import ValidationError
from models.messages import MessageRole
from services.cancellation import CancellationHandle
from services.llm import (
    ChatTurn, InvocationOptions, LangChainModelInvoker, ModelReply,
    content_text, infer_provider, to_langchain_messages, usage_from
)


class RecordingFactory:
    def __init__(self, reply: str):
        self.reply = reply
        self.calls = []

    def __call__(self, model_id, **kwargs):
        self.calls.append((model_id, kwargs))
        return GenericFakeChatModel(messages=iter([AIMessage(content=self.reply)]))


@pytest.mark.parametrize("model_id,provider_id,expected", [
    ("gpt-4o-mini", None, "openai"),
    ("claude-3-5-sonnet", None, "anthropic"),
    ("gemini-1.5-pro", None, "google_genai"),
    ("groq:llama3-8b", None, "groq"),
    ("gpt-4o", "azure_openai", "azure_openai"),
    ("my-local-model", None, None),
])
def test_infer_provider(model_id, provider_id, expected):
    assert infer_provider(model_id, provider_id) == expected


def test_content_text_flattens_blocks():
    blocks = [{"type": "text", "text": "Hello"}, {"type": "image_url", "image_url": {}}, " world"]

    assert content_text(blocks) == "Hello world"
    assert content_text("plain") == "plain"


def test_usage_from_maps_token_counts():
    message = AIMessage(content="x", usage_metadata={"input_tokens": 4, "output_tokens": 6, "total_tokens": 10})

    assert usage_from(message) == {"prompt_tokens": 4, "completion_tokens": 6, "total_tokens": 10}
    assert usage_from(AIMessage(content="x")) is None


def test_to_langchain_messages_with_system_prompt_and_images():
    transcript = [
        ChatTurn(role=MessageRole.USER, content="What is this?", images=[("image/png", b"png-bytes")]),
        ChatTurn(role=MessageRole.ASSISTANT, content="A cat."),
    ]

    messages = to_langchain_messages(transcript, system_prompt="Be brief")

    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    assert isinstance(messages[2], AIMessage)
    text_part, image_part = messages[1].content
    assert text_part == {"type": "text", "text": "What is this?"}
    encoded = base64.b64encode(b"png-bytes").decode("ascii")
    assert image_part["image_url"]["url"] == f"data:image/png;base64,{encoded}"


def test_to_langchain_messages_drops_images_for_text_models():
    transcript = [ChatTurn(role=MessageRole.USER, content="Hi", images=[("image/png", b"x")])]

    messages = to_langchain_messages(transcript, supports_images=False)

    assert messages == [HumanMessage(content="Hi")]


def test_ensure_ready_requires_provider_key(monkeypatch):
    invoker = LangChainModelInvoker()
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValidationError):
        invoker.ensure_ready("gpt-4o-mini", None)

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    invoker.ensure_ready("gpt-4o-mini", None)
    invoker.ensure_ready("my-local-model", None)


@pytest.mark.asyncio
async def test_invoke_without_streaming():
    factory = RecordingFactory("hi there")
    invoker = LangChainModelInvoker(model_factory=factory)
    options = InvocationOptions(provider_id="openai", max_tokens=64, stream=False, extra_params={"temperature": 0.2})

    reply = await invoker.invoke([ChatTurn(role=MessageRole.USER, content="Hi")], "gpt-4o-mini", options)

    assert isinstance(reply, ModelReply)
    assert reply.content == "hi there"
    assert factory.calls == [("gpt-4o-mini", {"temperature": 0.2, "max_tokens": 64, "model_provider": "openai"})]


@pytest.mark.asyncio
async def test_invoke_streams_deltas():
    invoker = LangChainModelInvoker(model_factory=RecordingFactory("hello streaming world"))

    stream = await invoker.invoke([ChatTurn(role=MessageRole.USER, content="Hi")], "gpt-4o-mini", InvocationOptions())
    deltas = [delta.text async for delta in stream]

    assert len(deltas) > 1
    assert "".join(deltas) == "hello streaming world"


@pytest.mark.asyncio
async def test_stream_stops_once_cancelled():
    invoker = LangChainModelInvoker(model_factory=RecordingFactory("one two three"))
    handle = CancellationHandle(uuid.uuid4())
    handle.cancel("stopped")

    stream = await invoker.invoke(
        [ChatTurn(role=MessageRole.USER, content="Hi")], "gpt-4o-mini", InvocationOptions(), handle
    )

    assert [delta async for delta in stream] == []
