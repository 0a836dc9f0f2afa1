from __future__ import annotations
from typing import Any

from langchain_openai import ChatOpenAI

from autobackend_config.settings import get_settings


def get_chat_model(**overrides: Any) -> ChatOpenAI:
    cfg = get_settings()
    params = {
        "model": cfg.LLM_MODEL,
        "api_key": cfg.LLM_API_KEY or "dummy",
        "temperature": cfg.TEMPERATURE,
        "timeout": cfg.VENDOR_TIMEOUT or None,
        # retries are owned by the gateway's backoff loop
        "max_retries": 0,
    }

    if cfg.LLM_BASE_URL:
        params["base_url"] = cfg.LLM_BASE_URL

    params.update(overrides)
    return ChatOpenAI(**params)
