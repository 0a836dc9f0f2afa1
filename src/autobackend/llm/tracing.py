"""Optional Langfuse tracing for vendor calls."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, List

from autobackend_config.settings import get_settings

logger = logging.getLogger(__name__)


def tracing_enabled() -> bool:
    cfg = get_settings()
    return bool(cfg.LANGFUSE_PUBLIC_KEY and cfg.LANGFUSE_SECRET_KEY)


@lru_cache(maxsize=1)
def _langfuse_handler() -> Any:
    from langfuse import Langfuse
    from langfuse.langchain import CallbackHandler

    cfg = get_settings()
    client = Langfuse(
        public_key=cfg.LANGFUSE_PUBLIC_KEY,
        secret_key=cfg.LANGFUSE_SECRET_KEY,
        host=cfg.LANGFUSE_HOST,
    )
    if not client.auth_check():
        logger.warning("Langfuse authentication failed; traces may be dropped")
    return CallbackHandler(public_key=cfg.LANGFUSE_PUBLIC_KEY)


def get_callbacks() -> List[Any]:
    """Return LangChain callbacks for the configured tracer, if any."""

    if not tracing_enabled():
        return []
    try:
        return [_langfuse_handler()]
    except Exception:
        logger.exception("Failed to initialise Langfuse tracing")
        return []


__all__ = ["get_callbacks", "tracing_enabled"]
