import asyncio
import os
from dataclasses import dataclass
from typing import Any, List, Optional

# Application modules build their engine at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_GENERATE_TITLE"] = "false"

import pytest
from sqlalchemy.orm import sessionmaker

from database import build_engine
from models import Base
from services.cancellation import CancellationRegistry
from services.chat import ChatService
from services.llm import ChatTurn, InvocationOptions, ModelDelta, ModelReply


@dataclass
class InvokeCall:
    transcript: List[ChatTurn]
    model_id: str
    options: InvocationOptions


class FakeInvoker:
    """
    Scripted stand-in for the model invoker.

    Each call consumes one script. A script is a reply string, an exception
    to raise, or a list of steps: strings are yielded as deltas, an
    ``asyncio.Event`` pauses the stream until it is set and an exception is
    raised mid-stream.
    """

    def __init__(self, *scripts: Any):
        self.scripts = list(scripts)
        self.calls: List[InvokeCall] = []
        self.ready_error: Optional[Exception] = None

    def ensure_ready(self, model_id: str, provider_id: Optional[str]) -> None:
        if self.ready_error is not None:
            raise self.ready_error

    async def invoke(self, transcript, model_id, options, handle=None):
        self.calls.append(InvokeCall(list(transcript), model_id, options))
        script = self.scripts.pop(0) if self.scripts else "ok"

        if isinstance(script, Exception):
            raise script

        if not options.stream:
            text = script if isinstance(script, str) else "".join(s for s in script if isinstance(s, str))
            return ModelReply(content=text, usage={"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5})

        return self._stream(script if isinstance(script, list) else [script])

    async def _stream(self, steps):
        for step in steps:
            if isinstance(step, asyncio.Event):
                await step.wait()
            elif isinstance(step, Exception):
                raise step
            else:
                yield ModelDelta(text=step)
            await asyncio.sleep(0)


class FakeTitleGenerator:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.calls = []

    def generate_title(self, thread_id, provider_id, model_id):
        self.calls.append((thread_id, provider_id, model_id))
        if self.error is not None:
            raise self.error


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'chat.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def invoker():
    return FakeInvoker()


@pytest.fixture
def registry():
    return CancellationRegistry()


@pytest.fixture
def chat_service(session_factory, invoker, registry):
    return ChatService(session_factory, invoker, registry=registry, default_model_id="gpt-test")
