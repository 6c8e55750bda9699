"""Automatic thread title generation."""
import re
from typing import Optional, List, Callable
from uuid import UUID
from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, SystemMessage, HumanMessage, AIMessage
from sqlalchemy.orm import Session
import logging

from celery_app import celery
from database import SessionLocal, get_db_sync
from models.messages import Message, MessageRole
from schemas.threads import ThreadUpdate
from services.active_path import ActivePathResolver
from services.llm import content_text
from services.threads import ThreadService

logger = logging.getLogger(__name__)

TITLE_SYSTEM_PROMPT = (
    "You are a helpful assistant that generates a short, concise title for a conversation. "
    "The title should be in the same language as the conversation. "
    "Return ONLY the title text, no quotes or extra words. Maximum 20 characters."
)
MAX_TITLE_LENGTH = 50

_QUOTES = re.compile(r"""^["'“”‘’「」『』]+|["'“”‘’「」『』]+$""")


class TitleService:
    """Builds and applies generated titles."""

    @staticmethod
    def build_prompt(messages: List[Message]) -> List[BaseMessage]:
        prompt: List[BaseMessage] = [SystemMessage(content=TITLE_SYSTEM_PROMPT)]
        for message in messages:
            if message.role == MessageRole.USER:
                prompt.append(HumanMessage(content=message.content))
            else:
                prompt.append(AIMessage(content=message.content))
        prompt.append(HumanMessage(content="Generate a title for this conversation."))
        return prompt

    @staticmethod
    def clean_title(raw: str) -> str:
        """Strip whitespace and surrounding quotes, and cap the length."""
        title = _QUOTES.sub("", raw.strip()).strip()
        return title[:MAX_TITLE_LENGTH]

    @staticmethod
    def generate_title(
        db: Session,
        thread_id: UUID,
        provider_id: Optional[str],
        model_id: str,
        chat_model: Optional[BaseChatModel] = None
    ) -> Optional[str]:
        """
        Generate a title from the first exchange of the thread's active path
        and store it on the thread.

        Returns:
            The new title, or None when there was nothing to title
        """
        conversation = [
            m for m in ActivePathResolver.get_active_path(db, thread_id) if not m.is_error
        ][:2]
        if not conversation:
            return None

        if chat_model is None:
            chat_model = init_chat_model(model_id, model_provider=provider_id, max_tokens=50)

        response = chat_model.invoke(TitleService.build_prompt(conversation))
        title = TitleService.clean_title(content_text(response.content))
        if not title:
            return None

        ThreadService.update_thread(db, thread_id, ThreadUpdate(title=title))
        logger.info(f"Generated title for thread {thread_id}: {title}")
        return title


class InlineTitleGenerator:
    """Generates titles in-process with its own database session."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def generate_title(self, thread_id: UUID, provider_id: Optional[str], model_id: str) -> None:
        db = self.session_factory()
        try:
            TitleService.generate_title(db, thread_id, provider_id, model_id)
        finally:
            db.close()


class CeleryTitleGenerator:
    """Hands title generation to a Celery worker."""

    def generate_title(self, thread_id: UUID, provider_id: Optional[str], model_id: str) -> None:
        generate_thread_title.delay(str(thread_id), provider_id, model_id)


@celery.task(bind=True, name="titles.generate_thread_title")
def generate_thread_title(self, thread_id: str, provider_id: Optional[str], model_id: str) -> Optional[str]:
    """Celery task wrapping TitleService.generate_title."""
    db = next(get_db_sync())
    try:
        return TitleService.generate_title(db, UUID(thread_id), provider_id, model_id)
    except Exception as exc:
        logger.error(f"Title generation failed for thread {thread_id}: {exc}")
        raise self.retry(exc=exc)
    finally:
        db.close()
