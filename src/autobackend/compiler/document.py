"""Consistency checker for serialized specification documents."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Set

from pydantic import ValidationError

from autobackend.agent.models import SpecificationDocument

from .base import CompileException, CompileFailure, CompileSuccess, Diagnostic

logger = logging.getLogger(__name__)

DOCUMENT_FILE = "openapi.json"
REF_PREFIX = "#/components/schemas/"

_PATH_PARAM = re.compile(r"{([^{}]+)}")


def iter_refs(schema: Any) -> Iterable[str]:
    if isinstance(schema, Mapping):
        ref = schema.get("$ref")
        if isinstance(ref, str):
            yield ref
        for value in schema.values():
            yield from iter_refs(value)
    elif isinstance(schema, list):
        for item in schema:
            yield from iter_refs(item)


def _check_operations(file_name: str, document: SpecificationDocument) -> List[Diagnostic]:
    diagnostics: List[Diagnostic] = []
    schemas = document.components.schemas
    seen: Set[Any] = set()
    for operation in document.operations:
        endpoint = operation.endpoint
        if endpoint in seen:
            diagnostics.append(
                Diagnostic(
                    file=file_name,
                    message=f"Duplicated endpoint {endpoint}.",
                    code="DuplicateEndpoint",
                )
            )
        seen.add(endpoint)

        if operation.authorization_type is not None and not operation.authorization_role:
            diagnostics.append(
                Diagnostic(
                    file=file_name,
                    message=f"{endpoint}: {operation.authorization_type} operation does not name its authorization_role.",
                    code="MissingAuthorizationRole",
                )
            )

        in_path = _PATH_PARAM.findall(operation.path)
        declared = [parameter.name for parameter in operation.parameters]
        for name in in_path:
            if name not in declared:
                diagnostics.append(
                    Diagnostic(
                        file=file_name,
                        message=f"{endpoint}: path parameter '{name}' is not declared in parameters.",
                        code="UndeclaredPathParameter",
                    )
                )
        for name in declared:
            if name not in in_path:
                diagnostics.append(
                    Diagnostic(
                        file=file_name,
                        message=f"{endpoint}: parameter '{name}' does not appear in the path.",
                        code="UnknownPathParameter",
                    )
                )

        for label, body in (("request", operation.request_body), ("response", operation.response_body)):
            if body is not None and body.type_name not in schemas:
                diagnostics.append(
                    Diagnostic(
                        file=file_name,
                        message=f"{endpoint}: {label} body type '{body.type_name}' is not defined in components.",
                        code="MissingSchema",
                    )
                )
    return diagnostics


def _check_components(file_name: str, document: SpecificationDocument) -> List[Diagnostic]:
    diagnostics: List[Diagnostic] = []
    schemas = document.components.schemas
    for name, schema in schemas.items():
        for ref in iter_refs(schema):
            target = ref[len(REF_PREFIX):] if ref.startswith(REF_PREFIX) else None
            if target is None or target not in schemas:
                diagnostics.append(
                    Diagnostic(
                        file=file_name,
                        message=f"Schema '{name}' references unresolvable '{ref}'.",
                        code="UnresolvedReference",
                    )
                )
    return diagnostics


def check_document(files: Mapping[str, str]) -> List[Diagnostic]:
    diagnostics: List[Diagnostic] = []
    documents = {name: content for name, content in files.items() if name.endswith(".json")}
    if not documents:
        return [
            Diagnostic(file=DOCUMENT_FILE, message="No specification document was provided.", code="MissingDocument")
        ]
    for file_name, content in documents.items():
        try:
            raw: Dict[str, Any] = json.loads(content)
        except json.JSONDecodeError as exc:
            diagnostics.append(
                Diagnostic(file=file_name, message=f"Invalid JSON: {exc.msg}", line=exc.lineno, column=exc.colno, code="JsonDecodeError")
            )
            continue
        try:
            document = SpecificationDocument.model_validate(raw)
        except ValidationError as exc:
            for error in exc.errors():
                location = ".".join(str(part) for part in error.get("loc", ()))
                diagnostics.append(
                    Diagnostic(file=file_name, message=f"{location}: {error.get('msg')}", code="SchemaViolation")
                )
            continue
        diagnostics.extend(_check_operations(file_name, document))
        diagnostics.extend(_check_components(file_name, document))
    return diagnostics


class DocumentCompiler:
    """Validates the specification document family in a worker thread."""

    async def compile(self, files: Mapping[str, str]):
        try:
            diagnostics = await asyncio.to_thread(check_document, dict(files))
        except Exception as exc:
            logger.exception("Specification document compiler crashed")
            return CompileException.of(exc)
        if diagnostics:
            return CompileFailure(diagnostics=diagnostics)
        return CompileSuccess()


__all__ = ["DOCUMENT_FILE", "DocumentCompiler", "REF_PREFIX", "check_document", "iter_refs"]
