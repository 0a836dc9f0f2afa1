"""Conversation dispatcher: the reusable unit of structured LLM interaction.

One ``conversate`` call sends the history plus the declared functions to the
vendor gateway and returns at most one accepted function call. Malformed
arguments and schema violations are fed back to the model as tool messages
and re-dispatched a bounded number of times; free text under an enforced
function call goes through the consent classifier once.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    Union,
)

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import BaseModel, ValidationError

from autobackend.errors import FunctionCallingError

from .events import (
    AssistantMessageEvent,
    JsonParseErrorEvent,
    JsonValidateErrorEvent,
    Progress,
    ProgressEvent,
    VendorRequestEvent,
    VendorResponseEvent,
    VendorRetryEvent,
    VendorTimeoutEvent,
)
from .token_usage import TokenUsageComponent, stage_of

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    path: str
    expected: str
    message: str
    value: Any = None


@dataclass
class ValidationSuccess:
    data: Any
    success: bool = True


@dataclass
class ValidationFailure:
    data: Any
    errors: List[FieldError] = field(default_factory=list)
    success: bool = False


Validation = Union[ValidationSuccess, ValidationFailure]
CustomValidator = Callable[[Any], Validation]


@dataclass
class FunctionSpec:
    """A function the model may call, described by a pydantic model."""

    name: str
    description: str
    parameters: Type[BaseModel]
    validate: Optional[CustomValidator] = None

    def tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.model_json_schema(),
            },
        }


def _field_errors(exc: ValidationError) -> List[FieldError]:
    errors: List[FieldError] = []
    for error in exc.errors():
        location = "".join(
            f"[{part}]" if isinstance(part, int) else f".{part}" for part in error.get("loc", ())
        )
        value = error.get("input")
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = repr(value)
        errors.append(
            FieldError(
                path=f"$input{location}",
                expected=str(error.get("type", "")),
                message=str(error.get("msg", "")),
                value=value,
            )
        )
    return errors


def validate_arguments(spec: FunctionSpec, raw: Any) -> Validation:
    """Run the pydantic shape check, then the optional custom validator."""

    try:
        data = spec.parameters.model_validate(raw)
    except ValidationError as exc:
        return ValidationFailure(data=raw, errors=_field_errors(exc))
    if spec.validate is None:
        return ValidationSuccess(data=data)
    return spec.validate(data)


# ---------------------------------------------------------------------------
# History conversion
# ---------------------------------------------------------------------------

HistoryItem = Union[BaseMessage, Tuple[str, str], Mapping[str, Any]]

_ROLES = {
    "system": SystemMessage,
    "developer": SystemMessage,
    "assistant": AIMessage,
    "ai": AIMessage,
    "user": HumanMessage,
    "human": HumanMessage,
}


def to_messages(histories: Iterable[HistoryItem]) -> List[BaseMessage]:
    """Accept LangChain messages, ``(role, text)`` tuples or role dicts."""

    messages: List[BaseMessage] = []
    for item in histories:
        if isinstance(item, BaseMessage):
            messages.append(item)
            continue
        if isinstance(item, tuple):
            role, content = item
        else:
            role, content = item.get("role", "user"), item.get("content", "")
        factory = _ROLES.get(str(role).lower())
        if factory is None:
            raise ValueError(f"Unknown history role: {role}")
        messages.append(factory(content=content))
    return messages


def _message_text(message: AIMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass
class ConversationResult:
    function_name: Optional[str]
    value: Any
    assistant_message: str = ""
    token_usage: TokenUsageComponent = field(default_factory=TokenUsageComponent)
    correlation_id: str = ""

    @property
    def called(self) -> bool:
        return self.function_name is not None


class ConversationDispatcher:
    def __init__(self, ctx: Any) -> None:
        self.ctx = ctx

    async def conversate(
        self,
        source: str,
        histories: Sequence[HistoryItem],
        functions: Sequence[FunctionSpec] = (),
        message: Optional[str] = None,
        enforce_function_call: bool = True,
        progress: Optional[Progress] = None,
        consent: bool = True,
    ) -> ConversationResult:
        ctx = self.ctx
        messages = to_messages(histories)
        if message:
            messages.append(HumanMessage(content=message))
        specs = {spec.name: spec for spec in functions}
        tools = [spec.tool() for spec in functions]
        tool_choice = "required" if enforce_function_call and tools else None

        usage = TokenUsageComponent()
        feedback_left = ctx.settings.FEEDBACK_RETRY
        consented = not consent

        while True:
            ctx.check_cancelled(source)
            correlation_id = uuid.uuid4().hex
            await ctx.dispatch(
                VendorRequestEvent(
                    source=source,
                    correlation_id=correlation_id,
                    tools=list(specs),
                    message_count=len(messages),
                )
            )

            async def _on_timeout(attempt: int, timeout: float, _cid: str = correlation_id) -> None:
                await ctx.dispatch(
                    VendorTimeoutEvent(source=source, correlation_id=_cid, attempt=attempt, timeout=timeout)
                )

            async def _on_retry(attempt: int, error: BaseException, _cid: str = correlation_id) -> None:
                await ctx.dispatch(
                    VendorRetryEvent(
                        source=source,
                        correlation_id=_cid,
                        attempt=attempt,
                        error_type=error.__class__.__name__,
                        error=str(error),
                    )
                )

            response = await ctx.gateway.request(
                messages,
                tools=tools,
                tool_choice=tool_choice,
                correlation_id=correlation_id,
                on_timeout=_on_timeout,
                on_retry=_on_retry,
            )
            delta = TokenUsageComponent.from_message(response)
            usage.increment(delta)
            ctx.usage.record(delta, [stage_of(source)])
            await ctx.dispatch(
                VendorResponseEvent(
                    source=source,
                    correlation_id=correlation_id,
                    function_calls=[call["name"] for call in response.tool_calls],
                    has_text=bool(_message_text(response)),
                    token_usage=delta.to_json(),
                )
            )
            messages.append(response)

            feedback = await self._check_calls(source, correlation_id, response, specs)
            if isinstance(feedback, ConversationResult):
                feedback.token_usage = usage
                if progress is not None:
                    progress.advance()
                    await ctx.dispatch(
                        ProgressEvent(
                            source=source,
                            completed=progress.completed,
                            total=progress.total,
                            token_usage=usage.to_json(),
                        )
                    )
                return feedback
            if feedback:
                messages.extend(feedback)
                if feedback_left <= 0:
                    raise FunctionCallingError(source, "function call arguments kept failing validation")
                feedback_left -= 1
                logger.warning("%s: re-dispatching with feedback (%d left)", source, feedback_left)
                continue

            text = _message_text(response)
            if text:
                await ctx.dispatch(AssistantMessageEvent(text=text))
            if tool_choice is None:
                return ConversationResult(
                    function_name=None,
                    value=None,
                    assistant_message=text,
                    token_usage=usage,
                    correlation_id=correlation_id,
                )
            if not consented:
                consented = True
                from .consent import consent_function_call

                directive = await consent_function_call(ctx, source, list(functions), text)
                if directive is not None:
                    messages.append(HumanMessage(content=directive))
                    continue
            raise FunctionCallingError(source, "the model answered without calling a function")

    async def _check_calls(
        self,
        source: str,
        correlation_id: str,
        response: AIMessage,
        specs: Mapping[str, FunctionSpec],
    ) -> Union[ConversationResult, List[BaseMessage]]:
        """Accept the first valid call, otherwise build tool-message feedback."""

        ctx = self.ctx
        feedback: List[BaseMessage] = []
        for call in response.invalid_tool_calls:
            error = call.get("error") or "arguments are not valid JSON"
            await ctx.dispatch(
                JsonParseErrorEvent(
                    source=source,
                    correlation_id=correlation_id,
                    function_name=call.get("name") or "",
                    arguments=str(call.get("args") or ""),
                    error=str(error),
                )
            )
            feedback.append(
                ToolMessage(
                    content=f"Failed to parse the arguments as JSON: {error}. Call the function again with valid JSON.",
                    tool_call_id=call.get("id") or "",
                )
            )

        accepted: Optional[ConversationResult] = None
        for call in response.tool_calls:
            spec = specs.get(call["name"])
            if spec is None:
                feedback.append(
                    ToolMessage(
                        content=f"Unknown function '{call['name']}'. Available: {', '.join(specs)}.",
                        tool_call_id=call.get("id") or "",
                    )
                )
                continue
            if accepted is not None:
                continue
            validation = validate_arguments(spec, call["args"])
            if validation.success:
                accepted = ConversationResult(
                    function_name=spec.name,
                    value=validation.data,
                    assistant_message=_message_text(response),
                    correlation_id=correlation_id,
                )
                continue
            errors = [error.model_dump() for error in validation.errors]
            await ctx.dispatch(
                JsonValidateErrorEvent(
                    source=source,
                    correlation_id=correlation_id,
                    function_name=spec.name,
                    errors=errors,
                )
            )
            feedback.append(
                ToolMessage(
                    content=(
                        "Type errors were found in the function arguments. "
                        "Fix them and call the function again.\n"
                        + json.dumps(errors, indent=2, default=str)
                    ),
                    tool_call_id=call.get("id") or "",
                )
            )

        if accepted is not None:
            return accepted
        return feedback


__all__ = [
    "ConversationDispatcher",
    "ConversationResult",
    "CustomValidator",
    "FieldError",
    "FunctionSpec",
    "Validation",
    "ValidationFailure",
    "ValidationSuccess",
    "to_messages",
    "validate_arguments",
]
