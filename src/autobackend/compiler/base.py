"""Embedded compiler contract shared by every generated-artifact family."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    code: str = ""

    def describe(self) -> str:
        location = self.file
        if self.line is not None:
            location = f"{location}:{self.line}"
            if self.column is not None:
                location = f"{location}:{self.column}"
        return f"{location} {self.message}"


class CompileSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["success"] = "success"


class CompileFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["failure"] = "failure"
    diagnostics: List[Diagnostic] = Field(default_factory=list)

    def files(self) -> List[str]:
        seen: Dict[str, None] = {}
        for diagnostic in self.diagnostics:
            seen.setdefault(diagnostic.file, None)
        return list(seen)


class CompileException(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["exception"] = "exception"
    cause: str
    error_type: str = ""

    @classmethod
    def of(cls, exc: BaseException) -> "CompileException":
        return cls(cause=str(exc) or exc.__class__.__name__, error_type=exc.__class__.__name__)


CompileResult = Annotated[
    Union[CompileSuccess, CompileFailure, CompileException],
    Field(discriminator="type"),
]


class Compiler(Protocol):
    """Compiles one artifact family given as ``{path: content}``."""

    async def compile(self, files: Mapping[str, str]) -> Any:  # -> CompileResult
        ...


__all__ = [
    "CompileException",
    "CompileFailure",
    "CompileResult",
    "CompileSuccess",
    "Compiler",
    "Diagnostic",
]
