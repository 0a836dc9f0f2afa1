"""Requirement analysis: plan the report, then write its documents."""

from __future__ import annotations

import logging
from typing import Any, List

from pydantic import BaseModel, Field

from autobackend.agent.dispatcher import FunctionSpec
from autobackend.agent.events import Progress
from autobackend.agent.prompts import ANALYZE_SCENARIO_PROMPT, ANALYZE_WRITE_PROMPT
from autobackend.agent.state import AnalyzeArtifact
from autobackend.errors import PhaseFailedError

from .common import run_units
from .histories import requirement_histories

logger = logging.getLogger(__name__)

DOCUMENT_DIR = "docs/analysis"


class AnalyzeFile(BaseModel):
    filename: str = Field(pattern=r"^[A-Za-z0-9_.-]+\.md$", description="Markdown file name.")
    reason: str = Field(description="What this document covers.")


class AnalyzeScenario(BaseModel):
    prefix: str = Field(pattern=r"^[a-z][A-Za-z0-9]*$", description="camelCase project prefix.")
    roles: List[str] = Field(default_factory=list, description="User roles of the system.")
    files: List[AnalyzeFile] = Field(min_length=1)


class AnalyzeDocument(BaseModel):
    content: str = Field(min_length=1, description="Markdown body of the document.")


async def orchestrate_analyze(ctx: Any) -> AnalyzeArtifact:
    plan = await ctx.conversate(
        "analyzeScenario",
        requirement_histories(ctx, ANALYZE_SCENARIO_PROMPT),
        [FunctionSpec("planDocuments", "Plan the analysis report.", AnalyzeScenario)],
    )
    scenario: AnalyzeScenario = plan.value
    unique = {item.filename: item for item in scenario.files}
    logger.info("Writing %d analysis document(s) for '%s'", len(unique), scenario.prefix)

    progress = Progress(total=len(unique))

    def write(item: AnalyzeFile):
        async def run() -> str:
            result = await ctx.conversate(
                "analyzeWrite",
                requirement_histories(ctx, ANALYZE_WRITE_PROMPT),
                [FunctionSpec("writeDocument", "Submit the document.", AnalyzeDocument)],
                message=(
                    f"Project prefix: {scenario.prefix}\n"
                    f"Roles: {', '.join(scenario.roles) or '-'}\n"
                    f"Documents of the report: {', '.join(unique)}\n\n"
                    f"Write `{item.filename}`: {item.reason}"
                ),
                progress=progress,
            )
            return result.value.content

        return run

    contents = await run_units(ctx, "analyzeWrite", [(name, write(item)) for name, item in unique.items()])
    files = {
        f"{DOCUMENT_DIR}/{name}": content
        for name, content in zip(unique, contents)
        if content is not None
    }
    if not files:
        raise PhaseFailedError("analyze", "no analysis document could be written")
    return AnalyzeArtifact(prefix=scenario.prefix, roles=scenario.roles, files=files)


__all__ = ["AnalyzeDocument", "AnalyzeFile", "AnalyzeScenario", "orchestrate_analyze"]
