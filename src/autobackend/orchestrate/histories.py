"""Conversation histories handed to the dispatcher by each phase."""

from __future__ import annotations

import json
from typing import Any, Iterable, List, Optional, Sequence

from langchain_core.messages import BaseMessage, SystemMessage

from autobackend.agent.models import AuthorizationRole, Operation, SpecificationDocument
from autobackend.agent.prompts import COMMON_PROMPT
from autobackend.agent.state import AnalyzeArtifact, SchemaArtifact

from .common import render_files


def system_message(ctx: Any, prompt: str) -> SystemMessage:
    common = COMMON_PROMPT.format(locale=ctx.settings.LOCALE)
    return SystemMessage(content=f"{common}\n\n{prompt}")


def requirement_histories(ctx: Any, prompt: str) -> List[BaseMessage]:
    return [system_message(ctx, prompt), *ctx.histories]


def analysis_histories(ctx: Any, analysis: AnalyzeArtifact, prompt: str) -> List[BaseMessage]:
    return [
        system_message(ctx, prompt),
        *ctx.histories,
        SystemMessage(
            content=(
                f"## Requirement analysis (project prefix: {analysis.prefix})\n\n"
                f"Roles: {', '.join(analysis.roles) or '-'}\n\n"
                + render_files(analysis.files)
            )
        ),
    ]


def schema_histories(
    ctx: Any,
    analysis: AnalyzeArtifact,
    schema: SchemaArtifact,
    prompt: str,
) -> List[BaseMessage]:
    return [
        *analysis_histories(ctx, analysis, prompt),
        SystemMessage(content="## Database schema\n\n" + render_files(schema.files)),
    ]


def describe_operation(operation: Operation) -> str:
    return json.dumps(operation.model_dump(by_alias=True, exclude_none=True), indent=2)


def interface_histories(
    ctx: Any,
    document: SpecificationDocument,
    prompt: str,
    schema: Optional[SchemaArtifact] = None,
) -> List[BaseMessage]:
    messages: List[BaseMessage] = [system_message(ctx, prompt)]
    if schema is not None:
        messages.append(SystemMessage(content="## Database schema\n\n" + render_files(schema.files)))
    endpoints = "\n".join(f"- `{operation.endpoint}`: {operation.summary}" for operation in document.operations)
    messages.append(SystemMessage(content=f"## API endpoints\n\n{endpoints}"))
    return messages


def authorization_context(operations: Iterable[Operation], roles: Sequence[AuthorizationRole]) -> str:
    """Join/login APIs of the role each operation requires, one section per operation."""

    by_name = {role.name: role for role in roles}
    sections = []
    for index, operation in enumerate(operations, start=1):
        role = by_name.get(operation.authorization_role or "")
        lines = [f"### {index}. {operation.endpoint}", ""]
        if role is None:
            lines.append("- None")
        else:
            lines.append(f"Role: `{role.name}`")
            lines.append("")
            for label, endpoint in (("join", role.join), ("login", role.login)):
                lines.append(f"- {label}: `{endpoint}`" if endpoint is not None else f"- {label}: -")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)
