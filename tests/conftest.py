import sys
import uuid
from collections import deque
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import openai
import pytest
from langchain_core.messages import AIMessage

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from autobackend.agent.context import PipelineContext
from autobackend_config.settings import Settings, get_settings

USAGE = {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15}


def tool_call(name: str, args: Dict[str, Any], usage: Optional[Dict[str, Any]] = None) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args, "id": f"call_{uuid.uuid4().hex[:8]}", "type": "tool_call"}],
        usage_metadata=usage or dict(USAGE),
    )


def invalid_call(name: str, raw: str, error: str = "Expecting value") -> AIMessage:
    return AIMessage(
        content="",
        invalid_tool_calls=[
            {
                "name": name,
                "args": raw,
                "id": f"call_{uuid.uuid4().hex[:8]}",
                "error": error,
                "type": "invalid_tool_call",
            }
        ],
        usage_metadata=dict(USAGE),
    )


def text_reply(text: str) -> AIMessage:
    return AIMessage(content=text, usage_metadata=dict(USAGE))


def rate_limit_error(message: str = "Rate limit reached") -> openai.RateLimitError:
    request = httpx.Request("POST", "https://example.invalid/v1/chat/completions")
    return openai.RateLimitError(message, response=httpx.Response(429, request=request), body=None)


class _BoundModel:
    def __init__(self, parent: "FakeChatModel", tools: List[Dict[str, Any]], tool_choice: Optional[str]):
        self.parent = parent
        self.tool_names = [tool["function"]["name"] for tool in tools]
        self.tool_choice = tool_choice

    async def ainvoke(self, messages, **kwargs):
        return self.parent.respond(list(messages), self.tool_names)


class FakeChatModel:
    """Deterministic stand-in for ChatOpenAI.

    Queued responses are returned first, in order. Otherwise the request is
    routed by the name of the first bound tool that has a handler; a handler
    returns tool-call arguments, an ``AIMessage`` or an exception to raise.
    """

    def __init__(self, responses: Optional[List[Any]] = None, handlers: Optional[Dict[str, Any]] = None):
        self.responses = deque(responses or [])
        self.handlers: Dict[str, Any] = dict(handlers or {})
        self.calls: List[Dict[str, Any]] = []
        self.bound: List[Any] = []

    def bind_tools(self, tools, tool_choice=None, **kwargs):
        bound = _BoundModel(self, list(tools), tool_choice)
        self.bound.append(bound)
        return bound

    async def ainvoke(self, messages, **kwargs):
        return self.respond(list(messages), [])

    def queue(self, *items: Any) -> None:
        self.responses.extend(items)

    def calls_for(self, tool_name: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if tool_name in call["tools"]]

    def respond(self, messages, tool_names: List[str]) -> AIMessage:
        self.calls.append({"messages": messages, "tools": tool_names})
        if self.responses:
            return self._materialize(self.responses.popleft(), None, messages)
        for name in tool_names:
            if name in self.handlers:
                return self._materialize(self.handlers[name], name, messages)
        raise AssertionError(f"No scripted response for tools {tool_names}")

    def _materialize(self, item: Any, name: Optional[str], messages) -> AIMessage:
        if isinstance(item, list):
            item = item.pop(0) if len(item) > 1 else item[0]
        if callable(item) and not isinstance(item, (AIMessage, BaseException)):
            item = item(messages)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, AIMessage):
            return item
        assert name is not None, "plain arguments need a handler name"
        return tool_call(name, item)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keep tests away from real tracing credentials and cached settings."""
    for key in ("LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY", "LANGFUSE_HOST"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        LLM_API_KEY="test",
        VENDOR_TIMEOUT=5.0,
        VENDOR_RETRY=1,
        BACKOFF_BASE_DELAY=0.0,
        BACKOFF_MAX_DELAY=0.0,
        BACKOFF_JITTER=0.0,
        SEMAPHORE=4,
        RETRY=2,
        FEEDBACK_RETRY=2,
        LANGFUSE_PUBLIC_KEY=None,
        LANGFUSE_SECRET_KEY=None,
    )


@pytest.fixture
def fake_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def ctx(settings, fake_model) -> PipelineContext:
    return PipelineContext(settings=settings, model=fake_model)
