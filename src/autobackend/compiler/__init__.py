"""Embedded compilers used as the correction oracle of each phase."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .base import (
    CompileException,
    CompileFailure,
    CompileResult,
    CompileSuccess,
    Compiler,
    Diagnostic,
)
from .document import DOCUMENT_FILE, DocumentCompiler
from .python import PythonSyntaxCompiler


@dataclass
class CompilerSuite:
    """One compiler per generated-artifact family."""

    schema: Any = field(default_factory=PythonSyntaxCompiler)
    interface: Any = field(default_factory=DocumentCompiler)
    test: Any = field(default_factory=PythonSyntaxCompiler)
    realize: Any = field(default_factory=PythonSyntaxCompiler)


__all__ = [
    "CompileException",
    "CompileFailure",
    "CompileResult",
    "CompileSuccess",
    "Compiler",
    "CompilerSuite",
    "DOCUMENT_FILE",
    "Diagnostic",
    "DocumentCompiler",
    "PythonSyntaxCompiler",
]
