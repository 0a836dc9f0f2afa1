"""Telemetry events and the in-process bus that carries them.

Every event is a pydantic model tagged by its ``type`` literal, so consumers
can either subscribe to a single tag or to ``"*"`` and switch on ``type``.
The bus keeps an append-only history of everything dispatched.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Annotated,
    Any,
    Awaitable,
    Callable,
    DefaultDict,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import BaseModel, Field, TypeAdapter

from .models import TestScenario

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventBase(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = Field(default_factory=_now)


class PhaseStartEvent(EventBase):
    type: Literal["phaseStart"] = "phaseStart"
    phase: str
    reason: str = ""
    step: int = 0


class PhaseCompleteEvent(EventBase):
    type: Literal["phaseComplete"] = "phaseComplete"
    phase: str
    step: int
    elapsed: float = 0.0
    token_usage: Dict[str, Any] = Field(default_factory=dict)


class PhaseFailureEvent(EventBase):
    type: Literal["phaseFailure"] = "phaseFailure"
    phase: str
    cause: str
    error_type: str = ""


class ProgressEvent(EventBase):
    type: Literal["progress"] = "progress"
    source: str
    completed: int
    total: int
    token_usage: Dict[str, Any] = Field(default_factory=dict)


class VendorRequestEvent(EventBase):
    type: Literal["vendorRequest"] = "vendorRequest"
    source: str
    correlation_id: str
    attempt: int = 1
    tools: List[str] = Field(default_factory=list)
    message_count: int = 0


class VendorResponseEvent(EventBase):
    type: Literal["vendorResponse"] = "vendorResponse"
    source: str
    correlation_id: str
    function_calls: List[str] = Field(default_factory=list)
    has_text: bool = False
    token_usage: Dict[str, Any] = Field(default_factory=dict)


class VendorTimeoutEvent(EventBase):
    type: Literal["vendorTimeout"] = "vendorTimeout"
    source: str
    correlation_id: str
    attempt: int
    timeout: float


class VendorRetryEvent(EventBase):
    type: Literal["vendorRetry"] = "vendorRetry"
    source: str
    correlation_id: str
    attempt: int
    error_type: str
    error: str = ""


class JsonParseErrorEvent(EventBase):
    type: Literal["jsonParseError"] = "jsonParseError"
    source: str
    correlation_id: str
    function_name: str = ""
    arguments: str = ""
    error: str = ""


class JsonValidateErrorEvent(EventBase):
    type: Literal["jsonValidateError"] = "jsonValidateError"
    source: str
    correlation_id: str
    function_name: str
    errors: List[Dict[str, Any]] = Field(default_factory=list)


class ConsentFunctionCallEvent(EventBase):
    type: Literal["consentFunctionCall"] = "consentFunctionCall"
    source: str
    assistant_message: str
    result: Optional[Dict[str, Any]] = None


class CompileValidateEvent(EventBase):
    type: Literal["compileValidate"] = "compileValidate"
    source: str
    attempt: int
    result: str
    diagnostics: List[Dict[str, Any]] = Field(default_factory=list)


class CorrectEvent(EventBase):
    type: Literal["correct"] = "correct"
    source: str
    attempt: int
    files: List[str] = Field(default_factory=list)
    token_usage: Dict[str, Any] = Field(default_factory=dict)


class CorrectFailureEvent(EventBase):
    type: Literal["correctFailure"] = "correctFailure"
    source: str
    attempts: int
    reason: str
    diagnostics: List[Dict[str, Any]] = Field(default_factory=list)


class TestScenarioEvent(EventBase):
    __test__ = False

    type: Literal["testScenario"] = "testScenario"
    step: int
    scenarios: List[TestScenario] = Field(default_factory=list)


class TestScenariosReviewEvent(EventBase):
    __test__ = False

    type: Literal["testScenariosReview"] = "testScenariosReview"
    step: int
    completed: int
    total: int
    scenarios: List[TestScenario] = Field(default_factory=list)
    token_usage: Dict[str, Any] = Field(default_factory=dict)


class ReviewFallbackEvent(EventBase):
    type: Literal["reviewFallback"] = "reviewFallback"
    source: str
    reason: str
    groups: int


class UnitFailureEvent(EventBase):
    type: Literal["unitFailure"] = "unitFailure"
    source: str
    unit: str
    error: str


class AssistantMessageEvent(EventBase):
    type: Literal["assistantMessage"] = "assistantMessage"
    text: str


class CancelledEvent(EventBase):
    type: Literal["cancelled"] = "cancelled"
    source: str = ""


AutoBackendEvent = Annotated[
    Union[
        PhaseStartEvent,
        PhaseCompleteEvent,
        PhaseFailureEvent,
        ProgressEvent,
        VendorRequestEvent,
        VendorResponseEvent,
        VendorTimeoutEvent,
        VendorRetryEvent,
        JsonParseErrorEvent,
        JsonValidateErrorEvent,
        ConsentFunctionCallEvent,
        CompileValidateEvent,
        CorrectEvent,
        CorrectFailureEvent,
        TestScenarioEvent,
        TestScenariosReviewEvent,
        ReviewFallbackEvent,
        UnitFailureEvent,
        AssistantMessageEvent,
        CancelledEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(AutoBackendEvent)


def parse_event(data: Dict[str, Any]) -> EventBase:
    """Rebuild a typed event from its JSON form (e.g. a replay log)."""

    return _EVENT_ADAPTER.validate_python(data)


Listener = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Append-only event history with per-type and wildcard subscribers."""

    WILDCARD = "*"

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)
        self.history: List[EventBase] = []

    def subscribe(self, event_type: str, listener: Listener) -> Callable[[], None]:
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[event_type].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def of_type(self, event_type: str) -> List[EventBase]:
        return [event for event in self.history if getattr(event, "type", None) == event_type]

    async def dispatch(self, event: EventBase) -> EventBase:
        self.history.append(event)
        event_type = getattr(event, "type", "")
        listeners = [*self._listeners.get(event_type, ()), *self._listeners.get(self.WILDCARD, ())]
        for listener in listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event listener failed while handling '%s'", event_type)
        return event


@dataclass
class Progress:
    """Completion counter shared by the sibling tasks of one sub-stage."""

    total: int
    completed: int = 0

    def advance(self, count: int = 1) -> "Progress":
        self.completed += count
        self.total = max(self.total, self.completed)
        return self


__all__ = [
    "AssistantMessageEvent",
    "AutoBackendEvent",
    "CancelledEvent",
    "CompileValidateEvent",
    "ConsentFunctionCallEvent",
    "CorrectEvent",
    "CorrectFailureEvent",
    "EventBase",
    "EventBus",
    "JsonParseErrorEvent",
    "JsonValidateErrorEvent",
    "Listener",
    "PhaseCompleteEvent",
    "PhaseFailureEvent",
    "PhaseStartEvent",
    "Progress",
    "ProgressEvent",
    "ReviewFallbackEvent",
    "TestScenarioEvent",
    "TestScenariosReviewEvent",
    "UnitFailureEvent",
    "VendorRequestEvent",
    "VendorResponseEvent",
    "VendorRetryEvent",
    "VendorTimeoutEvent",
    "parse_event",
]
