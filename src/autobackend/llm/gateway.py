"""Vendor gateway: one structured request with timeout and transient retry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage

from autobackend.errors import VendorTimeoutError
from autobackend.utils.backoff import is_retryable_error, random_backoff_retry
from autobackend_config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[int, float], Awaitable[Any]]
RetryCallback = Callable[[int, BaseException], Awaitable[Any]]


class ChatModelGateway:
    """Wraps a LangChain chat model (anything with ``bind_tools``/``ainvoke``)."""

    def __init__(self, model: Any = None, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        if model is None:
            from .client import get_chat_model

            model = get_chat_model()
        self.model = model

    def _bind(self, tools: Sequence[Dict[str, Any]], tool_choice: Optional[str]) -> Any:
        if not tools:
            return self.model
        if tool_choice:
            return self.model.bind_tools(list(tools), tool_choice=tool_choice)
        return self.model.bind_tools(list(tools))

    async def request(
        self,
        messages: List[BaseMessage],
        tools: Sequence[Dict[str, Any]] = (),
        tool_choice: Optional[str] = None,
        correlation_id: str = "",
        on_timeout: Optional[TimeoutCallback] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> AIMessage:
        bound = self._bind(tools, tool_choice)
        timeout = self.settings.VENDOR_TIMEOUT or None
        attempt = 0

        async def _call() -> AIMessage:
            nonlocal attempt
            attempt += 1
            logger.debug(
                "Vendor request %s attempt %d (%d messages, %d tools)",
                correlation_id,
                attempt,
                len(messages),
                len(tools),
            )
            try:
                if timeout is None:
                    return await bound.ainvoke(messages)
                return await asyncio.wait_for(bound.ainvoke(messages), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Vendor request %s timed out after %.1fs", correlation_id, timeout)
                if on_timeout is not None:
                    await on_timeout(attempt, timeout)
                raise

        try:
            return await random_backoff_retry(
                _call,
                max_retries=self.settings.VENDOR_RETRY,
                base_delay=self.settings.BACKOFF_BASE_DELAY,
                max_delay=self.settings.BACKOFF_MAX_DELAY,
                jitter=self.settings.BACKOFF_JITTER,
                handle_error=is_retryable_error,
                on_retry=on_retry,
            )
        except asyncio.TimeoutError as exc:
            raise VendorTimeoutError(timeout or 0.0, attempt) from exc


__all__ = ["ChatModelGateway"]
