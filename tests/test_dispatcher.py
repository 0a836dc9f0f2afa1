from __future__ import annotations

from typing import List

import pytest
from langchain_core.messages import HumanMessage, SystemMessage, ToolMessage
from pydantic import BaseModel

from autobackend.agent.dispatcher import (
    FunctionSpec,
    ValidationSuccess,
    to_messages,
    validate_arguments,
)
from autobackend.agent.events import Progress
from autobackend.errors import FunctionCallingError, PipelineCancelledError

from conftest import invalid_call, text_reply, tool_call


class Article(BaseModel):
    title: str
    tags: List[str] = []


ARTICLE = FunctionSpec("writeArticle", "Submit an article.", Article)
HISTORY = [("system", "You write articles."), {"role": "user", "content": "About cats."}]


def test_tool_declaration_uses_model_schema():
    tool = ARTICLE.tool()

    assert tool["type"] == "function"
    assert tool["function"]["name"] == "writeArticle"
    assert tool["function"]["parameters"]["required"] == ["title"]


def test_validate_arguments_reports_field_paths():
    result = validate_arguments(ARTICLE, {"tags": [1]})

    assert not result.success
    paths = {error.path for error in result.errors}
    assert "$input.title" in paths
    assert "$input.tags[0]" in paths


def test_to_messages_accepts_tuples_and_dicts():
    messages = to_messages(HISTORY)

    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    with pytest.raises(ValueError):
        to_messages([("robot", "beep")])


@pytest.mark.asyncio
async def test_conversate_returns_parsed_value(ctx, fake_model):
    fake_model.queue(tool_call("writeArticle", {"title": "Cats"}))
    progress = Progress(total=2)

    result = await ctx.conversate("analyzeWrite", HISTORY, [ARTICLE], message="Go", progress=progress)

    assert result.function_name == "writeArticle"
    assert result.value == Article(title="Cats")
    assert result.token_usage.total == 15
    assert ctx.usage.analyze.total == 15
    assert ctx.usage.facade.total == 15
    assert progress.completed == 1
    assert fake_model.bound[0].tool_choice == "required"
    assert isinstance(fake_model.calls[0]["messages"][-1], HumanMessage)
    request = ctx.bus.of_type("vendorRequest")[0]
    response = ctx.bus.of_type("vendorResponse")[0]
    assert request.correlation_id == response.correlation_id == result.correlation_id
    assert response.function_calls == ["writeArticle"]
    assert ctx.bus.of_type("progress")[0].completed == 1


@pytest.mark.asyncio
async def test_malformed_arguments_are_fed_back(ctx, fake_model):
    fake_model.queue(invalid_call("writeArticle", "{title: Cats"), tool_call("writeArticle", {"title": "Cats"}))

    result = await ctx.conversate("interfaceOperations", HISTORY, [ARTICLE])

    assert result.value.title == "Cats"
    parse_errors = ctx.bus.of_type("jsonParseError")
    assert len(parse_errors) == 1
    assert parse_errors[0].arguments == "{title: Cats"
    second_request = fake_model.calls[1]["messages"]
    assert isinstance(second_request[-1], ToolMessage)
    assert "JSON" in second_request[-1].content
    assert ctx.usage.interface.total == 30


@pytest.mark.asyncio
async def test_validation_errors_are_fed_back(ctx, fake_model):
    fake_model.queue(tool_call("writeArticle", {"tags": []}), tool_call("writeArticle", {"title": "Cats"}))

    result = await ctx.conversate("testWrite", HISTORY, [ARTICLE])

    assert result.value.title == "Cats"
    errors = ctx.bus.of_type("jsonValidateError")
    assert len(errors) == 1
    assert errors[0].errors[0]["path"] == "$input.title"
    assert "$input.title" in fake_model.calls[1]["messages"][-1].content


@pytest.mark.asyncio
async def test_custom_validator_can_down_select(ctx, fake_model):
    def only_known_tags(data: Article):
        return ValidationSuccess(data=data.model_copy(update={"tags": [t for t in data.tags if t == "pets"]}))

    spec = FunctionSpec("writeArticle", "Submit an article.", Article, validate=only_known_tags)
    fake_model.queue(tool_call("writeArticle", {"title": "Cats", "tags": ["pets", "spam"]}))

    result = await ctx.conversate("analyzeWrite", HISTORY, [spec])

    assert result.value.tags == ["pets"]
    assert ctx.bus.of_type("jsonValidateError") == []


@pytest.mark.asyncio
async def test_feedback_budget_is_bounded(ctx, fake_model):
    fake_model.queue(*[tool_call("writeArticle", {}) for _ in range(3)])

    with pytest.raises(FunctionCallingError):
        await ctx.conversate("realizeWrite", HISTORY, [ARTICLE])

    assert len(fake_model.calls) == 3
    assert len(ctx.bus.of_type("jsonValidateError")) == 3


@pytest.mark.asyncio
async def test_permission_request_gets_consent(ctx, fake_model):
    fake_model.queue(
        text_reply("Shall I write the article now?"),
        tool_call("consent", {"message": "Yes, call writeArticle immediately."}),
        tool_call("writeArticle", {"title": "Cats"}),
    )

    result = await ctx.conversate("analyzeWrite", HISTORY, [ARTICLE])

    assert result.value.title == "Cats"
    consent = ctx.bus.of_type("consentFunctionCall")[0]
    assert consent.result == {"type": "consent", "message": "Yes, call writeArticle immediately."}
    final_request = fake_model.calls[2]["messages"]
    assert final_request[-1].content == "Yes, call writeArticle immediately."
    assert ctx.bus.of_type("assistantMessage")[0].text == "Shall I write the article now?"


@pytest.mark.asyncio
async def test_plain_text_without_consent_fails(ctx, fake_model):
    fake_model.queue(text_reply("I cannot do that."), tool_call("notApplicable", {}))

    with pytest.raises(FunctionCallingError) as info:
        await ctx.conversate("prismaSchema", HISTORY, [ARTICLE])

    assert "prismaSchema" in str(info.value)


@pytest.mark.asyncio
async def test_optional_function_call_returns_text(ctx, fake_model):
    fake_model.queue(text_reply("Which database do you use?"))

    result = await ctx.conversate("analyze", HISTORY, [ARTICLE], enforce_function_call=False)

    assert result.function_name is None
    assert not result.called
    assert result.assistant_message == "Which database do you use?"
    assert fake_model.bound[0].tool_choice is None


@pytest.mark.asyncio
async def test_cancelled_context_stops_before_request(ctx, fake_model):
    ctx.cancel()

    with pytest.raises(PipelineCancelledError):
        await ctx.conversate("analyze", HISTORY, [ARTICLE])

    assert fake_model.calls == []
