from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv(override=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    LLM_BASE_URL: Optional[str] = None
    LLM_MODEL: str = "gpt-4o-mini"
    LLM_API_KEY: Optional[str] = None
    TEMPERATURE: float = 0.0

    # Vendor gateway
    VENDOR_TIMEOUT: Optional[float] = 180.0
    VENDOR_RETRY: int = 5
    BACKOFF_BASE_DELAY: float = 4.0
    BACKOFF_MAX_DELAY: float = 60.0
    BACKOFF_JITTER: float = 0.8

    # Orchestration
    SEMAPHORE: int = 16
    RETRY: int = 4
    FEEDBACK_RETRY: int = 3
    LOCALE: str = "en-US"

    LANGFUSE_HOST: Optional[str] = None
    LANGFUSE_PUBLIC_KEY: Optional[str] = None
    LANGFUSE_SECRET_KEY: Optional[str] = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
