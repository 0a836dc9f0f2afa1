"""Prerequisite-operation resolver for e2e test scenarios.

Identifiers are found syntactically: any path parameter or request body
property whose name ends with ``_id``/``Id`` refers to a resource that some
other operation must create first. The result is advisory material for the
scenario-writing prompt; nothing here calls the API.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .models import Endpoint, Operation, SpecificationDocument

REF_PREFIX = "#/components/schemas/"

_PATH_PARAM = re.compile(r"{([^{}]+)}")
_IDENTIFIER = re.compile(r"^(?P<stem>.+?)(?:_id|Id|ID)$")
_CREATE_NAMES = {"", "create"}


# ---------------------------------------------------------------------------
# Identifier extraction
# ---------------------------------------------------------------------------


def identifier_stem(name: str) -> Optional[str]:
    """``postId`` -> ``post``, ``article_comment_id`` -> ``articlecomment``."""

    match = _IDENTIFIER.match(name)
    if match is None:
        return None
    stem = _normalize(match.group("stem"))
    return stem or None


def _normalize(word: str) -> str:
    return re.sub(r"[^a-z0-9]", "", word.lower())


def _singular(word: str) -> str:
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "xes", "ches", "shes")):
        return word[:-2]
    if word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _property_names(
    schema: Any,
    schemas: Mapping[str, Mapping[str, Any]],
    visited: Set[str],
) -> Iterable[str]:
    if not isinstance(schema, Mapping):
        return
    ref = schema.get("$ref")
    if isinstance(ref, str):
        name = ref[len(REF_PREFIX):] if ref.startswith(REF_PREFIX) else ref
        if name in visited or name not in schemas:
            return
        visited.add(name)
        yield from _property_names(schemas[name], schemas, visited)
        return
    properties = schema.get("properties")
    if isinstance(properties, Mapping):
        for key, value in properties.items():
            yield key
            yield from _property_names(value, schemas, visited)
    items = schema.get("items")
    if items is not None:
        yield from _property_names(items, schemas, visited)
    for combinator in ("allOf", "oneOf", "anyOf"):
        for option in schema.get(combinator) or ():
            yield from _property_names(option, schemas, visited)


def get_reference_ids(document: SpecificationDocument, operation: Operation) -> List[str]:
    """Identifier-like names from the path and the flattened request body."""

    names: List[str] = []
    names.extend(_PATH_PARAM.findall(operation.path))
    names.extend(parameter.name for parameter in operation.parameters)
    if operation.request_body is not None:
        schemas = document.components.schemas
        names.extend(
            _property_names({"$ref": REF_PREFIX + operation.request_body.type_name}, schemas, set())
        )
    seen: Dict[str, None] = {}
    for name in names:
        if identifier_stem(name) is not None:
            seen.setdefault(name, None)
    return list(seen)


# ---------------------------------------------------------------------------
# Creator lookup
# ---------------------------------------------------------------------------


def _static_segments(path: str) -> List[str]:
    return [segment for segment in path.split("/") if segment]


def collection_path(path: str) -> str:
    """Strip trailing path parameters: ``/votes/{id}`` -> ``/votes``."""

    segments = _static_segments(path)
    while segments and _PATH_PARAM.fullmatch(segments[-1]):
        segments.pop()
    return "/" + "/".join(segments)


def is_creator(operation: Operation) -> bool:
    segments = _static_segments(operation.path)
    return (
        operation.method == "post"
        and bool(segments)
        and not _PATH_PARAM.fullmatch(segments[-1])
        and operation.name.lower() in _CREATE_NAMES
    )


def creates_entity(operation: Operation, stem: str) -> bool:
    if not is_creator(operation):
        return False
    entity = _singular(_normalize(_static_segments(operation.path)[-1]))
    return bool(entity) and (stem == entity or stem.endswith(entity))


def find_creators(
    identifier: str,
    operation: Operation,
    operations: Iterable[Operation],
    document: Optional[SpecificationDocument] = None,
) -> List[Operation]:
    """Creation operations that can supply ``identifier`` for ``operation``.

    Two kinds qualify: creators of the entity the identifier names, and
    creators on the operation's own collection that take the same identifier.
    ``operation`` itself is never returned.
    """

    stem = identifier_stem(identifier)
    if stem is None:
        return []
    document = document or SpecificationDocument(operations=list(operations))
    collection = collection_path(operation.path)
    found: Dict[Endpoint, Operation] = {}
    for candidate in operations:
        if candidate.endpoint == operation.endpoint:
            continue
        if creates_entity(candidate, stem):
            found.setdefault(candidate.endpoint, candidate)
            continue
        if (
            is_creator(candidate)
            and candidate.path == collection
            and identifier in get_reference_ids(document, candidate)
        ):
            found.setdefault(candidate.endpoint, candidate)
    return list(found.values())


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve(
    target: Operation,
    operations: Iterable[Operation],
    document: Optional[SpecificationDocument] = None,
) -> List[Operation]:
    """Ordered prerequisite chain for ``target``.

    Creators are emitted after their own prerequisites (depth-first,
    post-order), each endpoint at most once, and ``target`` never appears.
    """

    operations = list(operations)
    document = document or SpecificationDocument(operations=operations)
    visited: Set[Endpoint] = {target.endpoint}
    chain: List[Operation] = []

    def visit(operation: Operation) -> None:
        for identifier in get_reference_ids(document, operation):
            for creator in find_creators(identifier, operation, operations, document):
                if creator.endpoint in visited:
                    continue
                visited.add(creator.endpoint)
                visit(creator)
                chain.append(creator)

    visit(target)
    return chain


@dataclass
class DependencyRow:
    endpoint: Endpoint
    reference_ids: List[str] = field(default_factory=list)
    candidates: List[Endpoint] = field(default_factory=list)


def build_dependency_table(document: SpecificationDocument) -> List[DependencyRow]:
    rows: List[DependencyRow] = []
    for operation in document.operations:
        rows.append(
            DependencyRow(
                endpoint=operation.endpoint,
                reference_ids=get_reference_ids(document, operation),
                candidates=[
                    creator.endpoint
                    for creator in resolve(operation, document.operations, document)
                ],
            )
        )
    return rows


def format_dependency_table(rows: Iterable[DependencyRow]) -> str:
    lines = [
        "Endpoint | Required IDs | Candidate Creators",
        "---------|--------------|-------------------",
    ]
    for row in rows:
        ids = ", ".join(f"`{name}`" for name in row.reference_ids) or "-"
        creators = ", ".join(f"`{endpoint}`" for endpoint in row.candidates) or "-"
        lines.append(f"`{row.endpoint}` | {ids} | {creators}")
    return "\n".join(lines)


__all__ = [
    "DependencyRow",
    "build_dependency_table",
    "collection_path",
    "creates_entity",
    "find_creators",
    "format_dependency_table",
    "get_reference_ids",
    "identifier_stem",
    "is_creator",
    "resolve",
]
