"""Pydantic models describing API operations and test scenarios.

These models double as the argument shapes of the functions declared to the
language model, so their field descriptions are part of the prompt.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

HttpMethod = Literal["get", "post", "put", "delete", "patch"]
AuthorizationType = Literal["join", "login"]

_DUPLICATE_SLASHES = re.compile(r"/{2,}")
_FUNCTION_NAME = re.compile(r"^test_[a-z0-9]+(?:_[a-z0-9]+)*$")


def normalize_path(path: str) -> str:
    cleaned = _DUPLICATE_SLASHES.sub("/", "/" + (path or "").strip().lstrip("/"))
    if len(cleaned) > 1:
        cleaned = cleaned.rstrip("/")
    return cleaned


class Endpoint(BaseModel):
    """Identity of an API operation: method plus normalized path."""

    model_config = ConfigDict(frozen=True)

    method: HttpMethod = Field(description="HTTP method in lower case.")
    path: str = Field(description="Route path, e.g. /posts/{postId}/comments.")

    @field_validator("method", mode="before")
    @classmethod
    def _lower_method(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        return normalize_path(value)

    def __str__(self) -> str:
        return f"{self.method.upper()} {self.path}"


class Parameter(BaseModel):
    name: str = Field(description="Path parameter name as written between braces.")
    description: str = ""
    schema_: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "string"},
        alias="schema",
        description="JSON schema of the parameter value.",
    )

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BodyReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    type_name: str = Field(description="Name of a schema in the component registry.")
    description: str = ""


class Operation(BaseModel):
    """One API operation of the specification document."""

    model_config = ConfigDict(frozen=True)

    method: HttpMethod
    path: str
    name: str = Field(
        default="",
        description="Short verb naming the operation: create, at, index, update, erase.",
    )
    summary: str = ""
    description: str = ""
    parameters: List[Parameter] = Field(default_factory=list)
    request_body: Optional[BodyReference] = None
    response_body: Optional[BodyReference] = None
    authorization_role: Optional[str] = Field(
        default=None,
        description="Role the caller must be authenticated as, or the role this join/login operation serves.",
    )
    authorization_type: Optional[AuthorizationType] = Field(
        default=None,
        description="Set on the operation that registers (join) or signs in (login) a role.",
    )

    @field_validator("method", mode="before")
    @classmethod
    def _lower_method(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        return normalize_path(value)

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(method=self.method, path=self.path)


class AuthorizationRole(BaseModel):
    """Join and login operations of one role."""

    model_config = ConfigDict(frozen=True)

    name: str
    join: Optional[Endpoint] = None
    login: Optional[Endpoint] = None


class Components(BaseModel):
    model_config = ConfigDict(frozen=True)

    schemas: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class SpecificationDocument(BaseModel):
    """Full set of operations plus the named schema registry."""

    model_config = ConfigDict(frozen=True)

    operations: List[Operation] = Field(default_factory=list)
    components: Components = Field(default_factory=Components)

    def find(self, endpoint: Endpoint) -> Optional[Operation]:
        for operation in self.operations:
            if operation.endpoint == endpoint:
                return operation
        return None

    def endpoints(self) -> List[Endpoint]:
        return [operation.endpoint for operation in self.operations]

    def authorizations(self) -> List[AuthorizationRole]:
        roles: Dict[str, AuthorizationRole] = {}
        for operation in self.operations:
            if operation.authorization_type is None or not operation.authorization_role:
                continue
            name = operation.authorization_role
            role = roles.get(name) or AuthorizationRole(name=name)
            roles[name] = role.model_copy(update={operation.authorization_type: operation.endpoint})
        return list(roles.values())


class Dependency(BaseModel):
    endpoint: Endpoint = Field(description="Prerequisite API endpoint.")
    purpose: str = Field(
        default="",
        description="Why this call is needed before the scenario, e.g. creating a parent resource.",
    )


class Scenario(BaseModel):
    draft: str = Field(
        description="Natural language test intent covering success and failure paths."
    )
    function_name: str = Field(
        description="snake_case test function name starting with test_, e.g. test_create_post_with_valid_data."
    )
    dependencies: List[Dependency] = Field(default_factory=list)

    @field_validator("function_name")
    @classmethod
    def _check_function_name(cls, value: str) -> str:
        if not _FUNCTION_NAME.match(value):
            raise ValueError(
                "function name must be snake_case and start with the test_ prefix"
            )
        return value


class ScenarioGroup(BaseModel):
    endpoint: Endpoint = Field(description="Target endpoint, unique across groups.")
    scenarios: List[Scenario] = Field(min_length=1)


class TestScenario(BaseModel):
    """A scenario flattened together with its target endpoint."""

    __test__ = False

    endpoint: Endpoint
    draft: str
    function_name: str
    dependencies: List[Dependency] = Field(default_factory=list)

    @classmethod
    def flatten(cls, groups: Iterable[ScenarioGroup]) -> List["TestScenario"]:
        return [
            cls(
                endpoint=group.endpoint,
                draft=scenario.draft,
                function_name=scenario.function_name,
                dependencies=list(scenario.dependencies),
            )
            for group in groups
            for scenario in group.scenarios
        ]


__all__ = [
    "AuthorizationRole",
    "AuthorizationType",
    "BodyReference",
    "Components",
    "Dependency",
    "Endpoint",
    "HttpMethod",
    "Operation",
    "Parameter",
    "Scenario",
    "ScenarioGroup",
    "SpecificationDocument",
    "TestScenario",
    "normalize_path",
]
