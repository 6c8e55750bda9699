"""Application configuration read from environment variables."""
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chat.db")

ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DEFAULT_MODEL_ID = os.getenv("DEFAULT_MODEL_ID", "gpt-4o-mini")

# Title generation
AUTO_GENERATE_TITLE = os.getenv("AUTO_GENERATE_TITLE", "true").lower() == "true"
TITLE_GENERATION_PROVIDER = os.getenv("TITLE_GENERATION_PROVIDER") or None
TITLE_GENERATION_MODEL = os.getenv("TITLE_GENERATION_MODEL", "gpt-4o-mini")
TITLE_GENERATION_BACKEND = os.getenv("TITLE_GENERATION_BACKEND", "inline").lower()  # inline | celery

MAX_ATTACHMENT_SIZE = int(os.getenv("MAX_ATTACHMENT_SIZE", str(20 * 1024 * 1024)))  # 20MB

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

# Environment variable holding the API key for each LangChain provider
PROVIDER_API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google_genai": "GOOGLE_API_KEY",
    "mistralai": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
}
