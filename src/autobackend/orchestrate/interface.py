"""API interface phase: endpoints, operations, component schemas, then
validation of the assembled specification document."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, Field

from autobackend.agent.correction import CorrectionAttempt, correct
from autobackend.agent.dispatcher import FunctionSpec, ValidationFailure, ValidationSuccess, FieldError
from autobackend.agent.events import Progress
from autobackend.agent.models import Components, Endpoint, Operation, SpecificationDocument
from autobackend.agent.prompts import (
    INTERFACE_CORRECT_PROMPT,
    INTERFACE_ENDPOINT_PROMPT,
    INTERFACE_OPERATION_PROMPT,
    INTERFACE_SCHEMA_PROMPT,
)
from autobackend.agent.state import AnalyzeArtifact, InterfaceArtifact, SchemaArtifact
from autobackend.compiler.base import CompileFailure, CompileSuccess, Diagnostic
from autobackend.compiler.document import DOCUMENT_FILE, REF_PREFIX, iter_refs
from autobackend.errors import PhaseFailedError
from autobackend.utils.batch import divide_array

from .common import correction_error, render_diagnostics, run_units
from .histories import interface_histories, schema_histories

logger = logging.getLogger(__name__)

OPERATION_CAPACITY = 8
SCHEMA_CAPACITY = 8


class EndpointList(BaseModel):
    endpoints: List[Endpoint] = Field(min_length=1)


class OperationList(BaseModel):
    operations: List[Operation] = Field(default_factory=list)


class ComponentSchemas(BaseModel):
    schemas: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="JSON schema per component type name."
    )


class DocumentRevision(BaseModel):
    operations: List[Operation] = Field(default_factory=list, description="Corrected or added operations.")
    schemas: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Corrected or added schemas.")


def serialize_document(document: SpecificationDocument) -> str:
    return document.model_dump_json(by_alias=True, indent=2)


def merge_document(document: SpecificationDocument, revision: DocumentRevision) -> SpecificationDocument:
    """Revised operations replace their endpoint; revised schemas replace their name."""

    operations: Dict[Endpoint, Operation] = {}
    for operation in [*document.operations, *revision.operations]:
        operations[operation.endpoint] = operation
    schemas = {**document.components.schemas, **revision.schemas}
    return SpecificationDocument(operations=list(operations.values()), components=Components(schemas=schemas))


def referenced_types(operations: Sequence[Operation], schemas: Dict[str, Dict[str, Any]]) -> List[str]:
    names: Dict[str, None] = {}
    for operation in operations:
        for body in (operation.request_body, operation.response_body):
            if body is not None and body.type_name not in schemas:
                names.setdefault(body.type_name, None)
    for schema in schemas.values():
        for ref in iter_refs(schema):
            if ref.startswith(REF_PREFIX):
                name = ref[len(REF_PREFIX):]
                if name not in schemas:
                    names.setdefault(name, None)
    return list(names)


def _restrict_operations(endpoints: Sequence[Endpoint]):
    allowed = set(endpoints)

    def validate(data: OperationList):
        kept = {op.endpoint: op for op in data.operations if op.endpoint in allowed}
        if kept:
            return ValidationSuccess(data=OperationList(operations=list(kept.values())))
        return ValidationFailure(
            data=data,
            errors=[
                FieldError(
                    path="$input.operations",
                    expected="operations for: " + ", ".join(str(e) for e in endpoints),
                    message="no operation matches the requested endpoints",
                )
            ],
        )

    return validate


async def orchestrate_interface(
    ctx: Any,
    analysis: AnalyzeArtifact,
    schema: SchemaArtifact,
) -> InterfaceArtifact:
    listed = await ctx.conversate(
        "interfaceEndpoints",
        schema_histories(ctx, analysis, schema, INTERFACE_ENDPOINT_PROMPT),
        [FunctionSpec("makeEndpoints", "Submit the endpoint list.", EndpointList)],
    )
    endpoints = list(dict.fromkeys(listed.value.endpoints))
    logger.info("Designing %d endpoint(s)", len(endpoints))

    async def generate() -> SpecificationDocument:
        batches = divide_array(endpoints, OPERATION_CAPACITY)
        progress = Progress(total=len(batches))

        def write_operations(batch: List[Endpoint]):
            async def run() -> List[Operation]:
                result = await ctx.conversate(
                    "interfaceOperations",
                    schema_histories(ctx, analysis, schema, INTERFACE_OPERATION_PROMPT),
                    [
                        FunctionSpec(
                            "makeOperations",
                            "Submit the operations.",
                            OperationList,
                            validate=_restrict_operations(batch),
                        )
                    ],
                    message="Describe these endpoints:\n" + "\n".join(f"- `{e}`" for e in batch),
                    progress=progress,
                )
                return result.value.operations

            return run

        written = await run_units(
            ctx,
            "interfaceOperations",
            [(", ".join(str(e) for e in batch), write_operations(batch)) for batch in batches],
        )
        operations: Dict[Endpoint, Operation] = {}
        for chunk in written:
            for operation in chunk or ():
                operations[operation.endpoint] = operation
        missing = [str(e) for e in endpoints if e not in operations]
        if missing:
            logger.warning("No operation was written for: %s", ", ".join(missing))
        if not operations:
            raise PhaseFailedError("interface", "no operation could be written")

        document = SpecificationDocument(operations=list(operations.values()))
        return await _write_schemas(ctx, analysis, schema, document)

    async def compile(document: SpecificationDocument) -> Any:
        return await ctx.compile("interface", {DOCUMENT_FILE: serialize_document(document)}, source="interfaceCorrect")

    async def repair(
        document: SpecificationDocument,
        diagnostics: List[Diagnostic],
        attempts: List[CorrectionAttempt],
    ) -> SpecificationDocument:
        result = await ctx.conversate(
            "interfaceCorrect",
            interface_histories(ctx, document, INTERFACE_CORRECT_PROMPT, schema),
            [FunctionSpec("reviseDocument", "Submit corrected operations and schemas.", DocumentRevision)],
            message=(
                f"Correction attempt {len(attempts) + 1}.\n\n"
                f"## Diagnostics\n\n{render_diagnostics(diagnostics)}\n\n"
                f"## Document\n\n```json\n{serialize_document(document)}\n```"
            ),
        )
        return merge_document(document, result.value)

    outcome = await correct(generate, compile, repair, ctx.settings.RETRY, "interfaceCorrect", ctx)
    if not outcome.success:
        raise correction_error(
            "interface",
            outcome,
            "specification document is invalid",
            artifact=InterfaceArtifact(
                document=outcome.artifact, compiled=CompileFailure(diagnostics=outcome.diagnostics)
            ),
        )
    document = outcome.artifact
    authorizations = document.authorizations()
    logger.info(
        "Specification document has %d operation(s) and %d authorization role(s)",
        len(document.operations),
        len(authorizations),
    )
    return InterfaceArtifact(document=document, authorizations=authorizations, compiled=CompileSuccess())


async def _write_schemas(
    ctx: Any,
    analysis: AnalyzeArtifact,
    schema: SchemaArtifact,
    document: SpecificationDocument,
) -> SpecificationDocument:
    """Write component schemas until every referenced type exists, bounded by rounds."""

    schemas: Dict[str, Dict[str, Any]] = {}
    for _ in range(max(1, ctx.settings.RETRY)):
        names = referenced_types(document.operations, schemas)
        if not names:
            break
        batches = divide_array(names, SCHEMA_CAPACITY)
        progress = Progress(total=len(batches))

        def write_schemas(batch: List[str]):
            async def run() -> Dict[str, Dict[str, Any]]:
                result = await ctx.conversate(
                    "interfaceComponents",
                    schema_histories(ctx, analysis, schema, INTERFACE_SCHEMA_PROMPT),
                    [FunctionSpec("makeSchemas", "Submit the component schemas.", ComponentSchemas)],
                    message=(
                        "Write schemas for these type names:\n"
                        + "\n".join(f"- `{name}`" for name in batch)
                        + "\n\nOperations using them:\n"
                        + json.dumps(
                            [
                                op.model_dump(by_alias=True, exclude_none=True)
                                for op in document.operations
                                if any(
                                    body is not None and body.type_name in batch
                                    for body in (op.request_body, op.response_body)
                                )
                            ],
                            indent=2,
                        )
                    ),
                    progress=progress,
                )
                return result.value.schemas

            return run

        written = await run_units(
            ctx, "interfaceComponents", [(", ".join(batch), write_schemas(batch)) for batch in batches]
        )
        before = len(schemas)
        for chunk in written:
            schemas.update(chunk or {})
        if len(schemas) == before:
            break
    return document.model_copy(update={"components": Components(schemas=schemas)})


__all__ = [
    "ComponentSchemas",
    "DocumentRevision",
    "EndpointList",
    "OperationList",
    "merge_document",
    "orchestrate_interface",
    "referenced_types",
    "serialize_document",
]
