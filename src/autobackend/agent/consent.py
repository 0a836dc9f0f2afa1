"""Classifier for assistant messages that ask permission instead of acting."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from .events import ConsentFunctionCallEvent
from .prompts import CONSENT_SYSTEM_PROMPT
from .token_usage import TokenUsageComponent, stage_of

logger = logging.getLogger(__name__)


class ConsentArguments(BaseModel):
    message: str = Field(
        description="Directive message that grants permission and tells the assistant to call the function immediately."
    )


class NotApplicableArguments(BaseModel):
    pass


_TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "consent",
            "description": "The assistant is seeking approval or confirmation before calling a function.",
            "parameters": ConsentArguments.model_json_schema(),
        },
    },
    {
        "type": "function",
        "function": {
            "name": "notApplicable",
            "description": "The assistant message is not a request for permission to call a function.",
            "parameters": NotApplicableArguments.model_json_schema(),
        },
    },
]


async def consent_function_call(
    ctx: Any,
    source: str,
    functions: Sequence[Any],
    assistant_message: str,
) -> Optional[str]:
    """Return a consent message when ``assistant_message`` asks for permission."""

    if not assistant_message.strip():
        await ctx.dispatch(
            ConsentFunctionCallEvent(source=source, assistant_message=assistant_message, result=None)
        )
        return None

    names = ", ".join(getattr(spec, "name", str(spec)) for spec in functions)
    messages: List[Any] = [
        SystemMessage(content=CONSENT_SYSTEM_PROMPT),
        HumanMessage(
            content=(
                f"Available functions: {names}\n\n"
                f"Assistant message:\n{assistant_message}"
            )
        ),
    ]
    try:
        response = await ctx.gateway.request(messages, tools=_TOOLS, tool_choice="required")
    except Exception:
        logger.exception("%s: consent classification failed", source)
        await ctx.dispatch(
            ConsentFunctionCallEvent(source=source, assistant_message=assistant_message, result=None)
        )
        return None
    ctx.usage.record(TokenUsageComponent.from_message(response), [stage_of(source)])

    directive: Optional[str] = None
    result = None
    for call in response.tool_calls:
        if call["name"] == "consent":
            try:
                directive = ConsentArguments.model_validate(call["args"]).message
            except ValueError:
                continue
            result = {"type": "consent", "message": directive}
            break
        if call["name"] == "notApplicable":
            result = {"type": "notApplicable"}
            break

    await ctx.dispatch(
        ConsentFunctionCallEvent(source=source, assistant_message=assistant_message, result=result)
    )
    return directive


__all__ = ["consent_function_call"]
