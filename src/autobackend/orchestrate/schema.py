"""Database schema phase: SQLAlchemy model modules per component."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from autobackend.agent.correction import CorrectionAttempt, correct
from autobackend.agent.dispatcher import FunctionSpec
from autobackend.agent.events import Progress
from autobackend.agent.prompts import SCHEMA_COMPONENT_PROMPT, SCHEMA_CORRECT_PROMPT, SCHEMA_WRITE_PROMPT
from autobackend.agent.state import AnalyzeArtifact, SchemaArtifact
from autobackend.compiler.base import CompileFailure, CompileSuccess, Diagnostic
from autobackend.errors import PhaseFailedError

from .common import SourceFiles, correction_error, merge_files, render_diagnostics, render_files, restrict_files, run_units
from .histories import analysis_histories

logger = logging.getLogger(__name__)

MODEL_DIR = "app/models"
BASE_MODULE = f"{MODEL_DIR}/base.py"
BASE_SOURCE = '''from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
'''


class SchemaComponent(BaseModel):
    filename: str = Field(pattern=r"^[a-z][a-z0-9_]*\.py$", description="Module file name, e.g. articles.py.")
    namespace: str = Field(description="Business domain of the component.")
    tables: List[str] = Field(min_length=1, description="snake_case plural table names.")


class SchemaComponents(BaseModel):
    components: List[SchemaComponent] = Field(min_length=1)


class SchemaModule(BaseModel):
    content: str = Field(min_length=1, description="Complete Python module source.")


def unique_tables(components: List[SchemaComponent]) -> List[SchemaComponent]:
    """Drop tables already claimed by an earlier component, then empty components."""

    seen: set[str] = set()
    files: set[str] = {"base.py"}
    result: List[SchemaComponent] = []
    for component in components:
        tables = [table for table in dict.fromkeys(component.tables) if table not in seen]
        if not tables or component.filename in files:
            continue
        seen.update(tables)
        files.add(component.filename)
        result.append(component.model_copy(update={"tables": tables}))
    return result


async def orchestrate_prisma(ctx: Any, analysis: AnalyzeArtifact) -> SchemaArtifact:
    planned = await ctx.conversate(
        "prismaComponent",
        analysis_histories(ctx, analysis, SCHEMA_COMPONENT_PROMPT),
        [FunctionSpec("makeComponents", "Group the tables into modules.", SchemaComponents)],
    )
    components = unique_tables(planned.value.components)
    if not components:
        raise PhaseFailedError("prisma", "no schema component was planned")
    logger.info("Writing %d schema module(s)", len(components))

    async def generate() -> Dict[str, str]:
        progress = Progress(total=len(components))

        def write(component: SchemaComponent):
            async def run() -> str:
                result = await ctx.conversate(
                    "prismaSchema",
                    analysis_histories(ctx, analysis, SCHEMA_WRITE_PROMPT),
                    [FunctionSpec("writeModule", "Submit the module source.", SchemaModule)],
                    message=(
                        f"Component `{component.namespace}` in `{MODEL_DIR}/{component.filename}`.\n"
                        f"Tables: {', '.join(component.tables)}\n"
                        f"Tables of other components: "
                        + ", ".join(t for other in components if other is not component for t in other.tables)
                    ),
                    progress=progress,
                )
                return result.value.content

            return run

        sources = await run_units(
            ctx, "prismaSchema", [(component.filename, write(component)) for component in components]
        )
        files = {BASE_MODULE: BASE_SOURCE}
        for component, source in zip(components, sources):
            if source is not None:
                files[f"{MODEL_DIR}/{component.filename}"] = source
        if len(files) == 1:
            raise PhaseFailedError("prisma", "no schema module could be written")
        return files

    async def compile(files: Dict[str, str]) -> Any:
        return await ctx.compile("schema", files, source="prismaCorrect")

    async def repair(
        files: Dict[str, str],
        diagnostics: List[Diagnostic],
        attempts: List[CorrectionAttempt],
    ) -> Dict[str, str]:
        failing = [name for name in dict.fromkeys(d.file for d in diagnostics) if name in files]
        failing = failing or sorted(files)
        result = await ctx.conversate(
            "prismaCorrect",
            analysis_histories(ctx, analysis, SCHEMA_CORRECT_PROMPT),
            [
                FunctionSpec(
                    "fixModules",
                    "Submit the corrected modules.",
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

    outcome = await correct(generate, compile, repair, ctx.settings.RETRY, "prismaCorrect", ctx)
    if not outcome.success:
        raise correction_error(
            "prisma",
            outcome,
            "schema did not compile",
            artifact=SchemaArtifact(
                files=outcome.artifact, compiled=CompileFailure(diagnostics=outcome.diagnostics)
            ),
        )
    return SchemaArtifact(files=outcome.artifact, compiled=CompileSuccess())


__all__ = ["SchemaComponent", "SchemaComponents", "SchemaModule", "orchestrate_prisma", "unique_tables"]
