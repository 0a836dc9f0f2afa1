"""Implementation phase: one provider module per API operation."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from autobackend.agent.correction import CorrectionAttempt, correct
from autobackend.agent.dispatcher import FunctionSpec
from autobackend.agent.events import Progress
from autobackend.agent.models import Operation, SpecificationDocument
from autobackend.agent.prompts import REALIZE_CORRECT_PROMPT, REALIZE_WRITE_PROMPT
from autobackend.agent.state import RealizeArtifact, SchemaArtifact
from autobackend.compiler.base import CompileFailure, CompileSuccess, Diagnostic
from autobackend.errors import PhaseFailedError

from .common import SourceFiles, correction_error, merge_files, render_diagnostics, render_files, restrict_files, run_units
from .histories import describe_operation, interface_histories

logger = logging.getLogger(__name__)

PROVIDER_DIR = "app/providers"


class ProviderModule(BaseModel):
    content: str = Field(min_length=1, description="Complete Python module source.")


def provider_file(operation: Operation) -> str:
    """``DELETE /votes/{voteId}`` -> ``app/providers/delete_votes_by_vote_id.py``."""

    parts: List[str] = [operation.method]
    for segment in operation.path.strip("/").split("/"):
        if not segment:
            continue
        match = re.fullmatch(r"{(.+)}", segment)
        if match:
            segment = "by_" + re.sub(r"(?<!^)(?=[A-Z])", "_", match.group(1))
        parts.append(segment)
    stem = re.sub(r"[^a-z0-9]+", "_", "_".join(parts).lower()).strip("_")
    return f"{PROVIDER_DIR}/{stem}.py"


async def orchestrate_realize(
    ctx: Any,
    schema: SchemaArtifact,
    document: SpecificationDocument,
) -> RealizeArtifact:
    targets = {provider_file(operation): operation for operation in document.operations}
    logger.info("Implementing %d provider(s)", len(targets))

    async def generate() -> Dict[str, str]:
        progress = Progress(total=len(targets))

        def write(operation: Operation):
            async def run() -> str:
                result = await ctx.conversate(
                    "realizeWrite",
                    interface_histories(ctx, document, REALIZE_WRITE_PROMPT, schema),
                    [FunctionSpec("writeProvider", "Submit the provider module.", ProviderModule)],
                    message=f"## Operation\n\n```json\n{describe_operation(operation)}\n```",
                    progress=progress,
                )
                return result.value.content

            return run

        sources = await run_units(ctx, "realizeWrite", [(name, write(op)) for name, op in targets.items()])
        files = {name: source for name, source in zip(targets, sources) if source is not None}
        if not files:
            raise PhaseFailedError("realize", "no provider could be written")
        return files

    async def compile(files: Dict[str, str]) -> Any:
        return await ctx.compile("realize", {**schema.files, **files}, source="realizeCorrect")

    async def repair(
        files: Dict[str, str],
        diagnostics: List[Diagnostic],
        attempts: List[CorrectionAttempt],
    ) -> Dict[str, str]:
        failing = [name for name in dict.fromkeys(d.file for d in diagnostics) if name in files]
        failing = failing or sorted(files)
        result = await ctx.conversate(
            "realizeCorrect",
            interface_histories(ctx, document, REALIZE_CORRECT_PROMPT, schema),
            [
                FunctionSpec(
                    "fixProviders",
                    "Submit the corrected provider modules.",
                    SourceFiles,
                    validate=restrict_files(failing),
                )
            ],
            message=(
                f"Correction attempt {len(attempts) + 1}.\n\n"
                f"## Diagnostics\n\n{render_diagnostics(diagnostics)}\n\n"
                f"## Failing modules\n\n{render_files(files, failing)}"
            ),
        )
        return merge_files(files, result.value.files)

    outcome = await correct(generate, compile, repair, ctx.settings.RETRY, "realizeCorrect", ctx)
    if not outcome.success:
        raise correction_error(
            "realize",
            outcome,
            "providers did not compile",
            artifact=RealizeArtifact(
                files=outcome.artifact, compiled=CompileFailure(diagnostics=outcome.diagnostics)
            ),
        )
    return RealizeArtifact(files=outcome.artifact, compiled=CompileSuccess())


__all__ = ["ProviderModule", "orchestrate_realize", "provider_file"]
