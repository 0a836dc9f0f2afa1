from __future__ import annotations

import asyncio

import pytest
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from autobackend.errors import VendorTimeoutError
from autobackend.llm.client import get_chat_model
from autobackend.llm.gateway import ChatModelGateway

from conftest import rate_limit_error, text_reply, tool_call

TOOLS = [{"type": "function", "function": {"name": "noop", "description": "", "parameters": {"type": "object"}}}]


class SlowModel:
    def __init__(self):
        self.attempts = 0

    def bind_tools(self, tools, tool_choice=None, **kwargs):
        return self

    async def ainvoke(self, messages, **kwargs):
        self.attempts += 1
        await asyncio.sleep(1)


def test_get_chat_model_reads_settings(monkeypatch):
    monkeypatch.setenv("LLM_MODEL", "gpt-test")
    monkeypatch.setenv("LLM_API_KEY", "sk-test")

    model = get_chat_model(temperature=0.5)

    assert isinstance(model, ChatOpenAI)
    assert model.model_name == "gpt-test"
    assert model.temperature == 0.5
    assert model.max_retries == 0


def test_chat_model_leaves_tracing_to_the_graph(monkeypatch):
    monkeypatch.setenv("LANGFUSE_PUBLIC_KEY", "pk-lf-test")
    monkeypatch.setenv("LANGFUSE_SECRET_KEY", "sk-lf-test")

    model = get_chat_model()

    assert not model.callbacks


@pytest.mark.asyncio
async def test_request_binds_tools_with_choice(settings, fake_model):
    fake_model.queue(tool_call("noop", {}))
    gateway = ChatModelGateway(fake_model, settings)

    response = await gateway.request([HumanMessage(content="hi")], tools=TOOLS, tool_choice="required")

    assert response.tool_calls[0]["name"] == "noop"
    assert fake_model.bound[0].tool_names == ["noop"]
    assert fake_model.bound[0].tool_choice == "required"


@pytest.mark.asyncio
async def test_timeouts_are_reported_and_retried(settings):
    settings = settings.model_copy(update={"VENDOR_TIMEOUT": 0.01, "VENDOR_RETRY": 2})
    model = SlowModel()
    timeouts = []

    async def on_timeout(attempt, timeout):
        timeouts.append((attempt, timeout))

    gateway = ChatModelGateway(model, settings)

    with pytest.raises(VendorTimeoutError) as info:
        await gateway.request([HumanMessage(content="hi")], tools=TOOLS, on_timeout=on_timeout)

    assert model.attempts == 2
    assert timeouts == [(1, 0.01), (2, 0.01)]
    assert info.value.attempts == 2


@pytest.mark.asyncio
async def test_dispatcher_emits_timeout_events(ctx, settings):
    ctx.settings = settings.model_copy(update={"VENDOR_TIMEOUT": 0.01})
    ctx.gateway = ChatModelGateway(SlowModel(), ctx.settings)

    with pytest.raises(VendorTimeoutError):
        await ctx.conversate("analyze", [("user", "hi")], [])

    events = ctx.bus.of_type("vendorTimeout")
    assert len(events) == 1
    assert events[0].timeout == 0.01


@pytest.mark.asyncio
async def test_transient_errors_are_reported_and_retried(settings, fake_model):
    settings = settings.model_copy(update={"VENDOR_RETRY": 2})
    fake_model.queue(rate_limit_error(), tool_call("noop", {}))
    retries = []

    async def on_retry(attempt, error):
        retries.append((attempt, error.__class__.__name__))

    gateway = ChatModelGateway(fake_model, settings)

    response = await gateway.request([HumanMessage(content="hi")], tools=TOOLS, on_retry=on_retry)

    assert response.tool_calls[0]["name"] == "noop"
    assert len(fake_model.calls) == 2
    assert retries == [(1, "RateLimitError")]


@pytest.mark.asyncio
async def test_dispatcher_emits_retry_events(ctx, fake_model, settings):
    ctx.settings = settings.model_copy(update={"VENDOR_RETRY": 2})
    ctx.gateway = ChatModelGateway(fake_model, ctx.settings)
    fake_model.queue(rate_limit_error(), text_reply("done"))

    result = await ctx.conversate("analyze", [("user", "hi")], [])

    assert result.assistant_message == "done"
    events = ctx.bus.of_type("vendorRetry")
    assert len(events) == 1
    assert events[0].attempt == 1
    assert events[0].error_type == "RateLimitError"
    assert events[0].correlation_id == ctx.bus.of_type("vendorRequest")[0].correlation_id
