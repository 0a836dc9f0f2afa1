"""Syntax-level compiler for generated Python sources."""

from __future__ import annotations

import ast
import asyncio
import logging
from typing import List, Mapping

from .base import CompileException, CompileFailure, CompileSuccess, Diagnostic

logger = logging.getLogger(__name__)


def _format_syntax_error(file_name: str, exc: SyntaxError) -> Diagnostic:
    message = exc.msg or "invalid syntax"
    if exc.text:
        message = f"{message}: {exc.text.strip()}"
    return Diagnostic(
        file=file_name,
        message=f"Syntax error: {message}",
        line=exc.lineno,
        column=exc.offset,
        code=exc.__class__.__name__,
    )


def check_sources(files: Mapping[str, str]) -> List[Diagnostic]:
    """Parse every ``.py`` entry; non-Python files are ignored."""

    diagnostics: List[Diagnostic] = []
    for file_name, source in files.items():
        if not file_name.endswith(".py"):
            continue
        if not isinstance(source, str):
            raise TypeError(f"{file_name}: source contents must be a string")
        try:
            tree = ast.parse(source, filename=file_name)
        except SyntaxError as exc:
            diagnostics.append(_format_syntax_error(file_name, exc))
            continue
        if not tree.body:
            diagnostics.append(
                Diagnostic(file=file_name, message="File is empty.", code="EmptyModule")
            )
    return diagnostics


class PythonSyntaxCompiler:
    """Parses sources with :mod:`ast` in a worker thread."""

    async def compile(self, files: Mapping[str, str]):
        try:
            diagnostics = await asyncio.to_thread(check_sources, dict(files))
        except Exception as exc:
            logger.exception("Python syntax compiler crashed")
            return CompileException.of(exc)
        if diagnostics:
            return CompileFailure(diagnostics=diagnostics)
        return CompileSuccess()


__all__ = ["PythonSyntaxCompiler", "check_sources"]
