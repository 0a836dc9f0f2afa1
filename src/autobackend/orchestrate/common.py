"""Pieces shared by the phase orchestrators."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel, Field

from autobackend.agent.dispatcher import CustomValidator, FieldError, ValidationFailure, ValidationSuccess
from autobackend.agent.events import UnitFailureEvent
from autobackend.compiler.base import Diagnostic
from autobackend.errors import CompilerCrashError, PhaseFailedError, PipelineCancelledError
from autobackend.utils.batch import execute_batch

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SourceFile(BaseModel):
    filename: str = Field(description="Path of the file, exactly as given.")
    content: str = Field(description="Complete file content.")


class SourceFiles(BaseModel):
    files: List[SourceFile] = Field(description="Every file you changed, with its full content.")


def restrict_files(allowed: Collection[str]) -> CustomValidator:
    """Keep only files the caller asked for; reject when nothing usable is left."""

    allowed = set(allowed)

    def validate(data: SourceFiles) -> Any:
        kept = [item for item in data.files if item.filename in allowed]
        if kept:
            dropped = len(data.files) - len(kept)
            if dropped:
                logger.debug("Discarded %d file(s) outside the requested set", dropped)
            return ValidationSuccess(data=SourceFiles(files=kept))
        return ValidationFailure(
            data=data,
            errors=[
                FieldError(
                    path="$input.files",
                    expected=f"files among: {', '.join(sorted(allowed))}",
                    message="none of the returned files was requested",
                    value=[item.filename for item in data.files],
                )
            ],
        )

    return validate


def render_files(files: Mapping[str, str], names: Optional[Iterable[str]] = None) -> str:
    selected = list(names) if names is not None else sorted(files)
    blocks = []
    for name in selected:
        if name in files:
            blocks.append(f"### {name}\n\n```\n{files[name]}\n```")
    return "\n\n".join(blocks)


def render_diagnostics(diagnostics: Sequence[Diagnostic]) -> str:
    return "\n".join(f"- {diagnostic.describe()}" for diagnostic in diagnostics)


def correction_error(phase: str, outcome: Any, summary: str, artifact: Any) -> PhaseFailedError:
    """Phase-level error for a correction loop that ended in failure."""

    if outcome.reason == "exception":
        cause = "; ".join(diagnostic.message for diagnostic in outcome.diagnostics)
        return CompilerCrashError(phase, cause, artifact=artifact)
    return PhaseFailedError(
        phase, f"{summary} ({outcome.reason}): {render_diagnostics(outcome.diagnostics)}", artifact=artifact
    )


async def run_units(
    ctx: Any,
    source: str,
    units: Sequence[Tuple[str, Callable[[], Awaitable[T]]]],
) -> List[Optional[T]]:
    """Run independent units concurrently; a failed unit yields ``None``.

    Every failure is reported with a ``unitFailure`` event. Cancellation is
    never contained.
    """

    def contain(unit: str, factory: Callable[[], Awaitable[T]]) -> Callable[[], Awaitable[Optional[T]]]:
        async def run() -> Optional[T]:
            try:
                return await factory()
            except PipelineCancelledError:
                raise
            except Exception as exc:
                logger.exception("%s: unit '%s' failed", source, unit)
                await ctx.dispatch(UnitFailureEvent(source=source, unit=unit, error=str(exc)))
                return None

        return run

    return await execute_batch([contain(unit, factory) for unit, factory in units], ctx.semaphore())


def merge_files(files: Mapping[str, str], revised: Iterable[SourceFile]) -> Dict[str, str]:
    merged = dict(files)
    for item in revised:
        merged[item.filename] = item.content
    return merged


__all__ = [
    "SourceFile",
    "SourceFiles",
    "correction_error",
    "merge_files",
    "render_diagnostics",
    "render_files",
    "restrict_files",
    "run_units",
]
