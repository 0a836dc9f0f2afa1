"""Per-run context passed explicitly to every component of the pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence

from langchain_core.messages import BaseMessage

from autobackend.compiler import CompilerSuite
from autobackend.compiler.base import CompileException
from autobackend.errors import PipelineCancelledError
from autobackend_config.settings import Settings, get_settings

from .dispatcher import ConversationDispatcher, ConversationResult, FunctionSpec, HistoryItem, to_messages
from .events import EventBase, EventBus, Progress
from .state import PipelineState, StateStore
from .token_usage import TokenUsage

logger = logging.getLogger(__name__)


class PipelineContext:
    """Everything one pipeline run shares: settings, gateway, bus and state."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        gateway: Any = None,
        model: Any = None,
        compilers: Optional[CompilerSuite] = None,
        bus: Optional[EventBus] = None,
        store: Optional[StateStore] = None,
        histories: Sequence[HistoryItem] = (),
    ) -> None:
        self.settings = settings or get_settings()
        if gateway is None:
            from autobackend.llm.gateway import ChatModelGateway

            gateway = ChatModelGateway(model, self.settings)
        self.gateway = gateway
        self.compilers = compilers or CompilerSuite()
        self.bus = bus or EventBus()
        self.store = store or StateStore()
        self.usage = TokenUsage()
        self.histories: List[BaseMessage] = to_messages(histories)
        self.dispatcher = ConversationDispatcher(self)
        self._cancelled = asyncio.Event()

    # ------------------------------------------------------------------
    # State and telemetry
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self.store.get()

    async def dispatch(self, event: EventBase) -> EventBase:
        return await self.bus.dispatch(event)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        logger.info("Cancellation requested")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self, source: str = "") -> None:
        if self._cancelled.is_set():
            raise PipelineCancelledError(source)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def conversate(
        self,
        source: str,
        histories: Sequence[HistoryItem],
        functions: Sequence[FunctionSpec] = (),
        message: Optional[str] = None,
        enforce_function_call: bool = True,
        progress: Optional[Progress] = None,
    ) -> ConversationResult:
        return await self.dispatcher.conversate(
            source,
            histories,
            functions,
            message=message,
            enforce_function_call=enforce_function_call,
            progress=progress,
        )

    async def compile(self, family: str, files: Mapping[str, str], source: str = "") -> Any:
        self.check_cancelled(source or family)
        compiler = getattr(self.compilers, family)
        try:
            return await compiler.compile(dict(files))
        except Exception as exc:
            logger.exception("%s compiler raised", family)
            return CompileException.of(exc)

    def semaphore(self) -> int:
        return max(1, int(self.settings.SEMAPHORE))


__all__ = ["PipelineContext"]
