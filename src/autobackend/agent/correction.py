"""Compiler-feedback correction loop shared by every code-generating phase.

    Drafting -> Diagnosing -> success
                Diagnosing -> Repairing -> Diagnosing ...
                Diagnosing -> failure (compiler exception, budget exhausted)
                Repairing -> failure (the repair request raised)

``max_attempts`` bounds the number of Repairing transitions, so a compiler
that always fails is called ``max_attempts + 1`` times.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

from autobackend.compiler.base import CompileException, CompileFailure, CompileSuccess, Diagnostic
from autobackend.errors import PipelineCancelledError

from .events import CompileValidateEvent, CorrectEvent, CorrectFailureEvent
from .token_usage import TokenUsageComponent

logger = logging.getLogger(__name__)

A = TypeVar("A")


class CorrectionState(str, enum.Enum):
    DRAFTING = "drafting"
    DIAGNOSING = "diagnosing"
    REPAIRING = "repairing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class CorrectionAttempt(Generic[A]):
    index: int
    input_artifact: A
    diagnostics: List[Diagnostic]
    output_artifact: Optional[A] = None


@dataclass
class CorrectionSuccess(Generic[A]):
    artifact: A
    attempts: List[CorrectionAttempt[A]] = field(default_factory=list)
    success: bool = True


@dataclass
class CorrectionFailure(Generic[A]):
    artifact: A
    diagnostics: List[Diagnostic]
    attempts: List[CorrectionAttempt[A]] = field(default_factory=list)
    reason: str = "exhausted"
    success: bool = False


CorrectionResult = Union[CorrectionSuccess[A], CorrectionFailure[A]]

Generate = Callable[[], Awaitable[A]]
Compile = Callable[[A], Awaitable[Any]]
Repair = Callable[[A, List[Diagnostic], List[CorrectionAttempt[A]]], Awaitable[A]]


def _enter(source: str, current: CorrectionState, target: CorrectionState) -> CorrectionState:
    logger.debug("%s: %s -> %s", source, current.value, target.value)
    return target


async def correct(
    generate: Generate[A],
    compile: Compile[A],
    repair: Repair[A],
    max_attempts: int,
    source: str,
    ctx: Any,
) -> CorrectionResult[A]:
    """Drive generate/compile/repair cycles until success or terminal failure."""

    state = CorrectionState.DRAFTING
    logger.debug("%s: %s", source, state.value)
    artifact = await generate()
    attempts: List[CorrectionAttempt[A]] = []

    while True:
        state = _enter(source, state, CorrectionState.DIAGNOSING)
        ctx.check_cancelled(source)
        result = await compile(artifact)

        if isinstance(result, CompileSuccess):
            state = _enter(source, state, CorrectionState.SUCCEEDED)
            logger.info("%s: compiled after %d repair(s)", source, len(attempts))
            return CorrectionSuccess(artifact=artifact, attempts=attempts)

        if not isinstance(result, (CompileFailure, CompileException)):
            result = CompileException(
                cause=f"unexpected compile result: {result!r}", error_type=result.__class__.__name__
            )

        if isinstance(result, CompileException):
            state = _enter(source, state, CorrectionState.FAILED)
            diagnostics = [Diagnostic(file="", message=result.cause, code=result.error_type)]
            await ctx.dispatch(
                CompileValidateEvent(
                    source=source,
                    attempt=len(attempts) + 1,
                    result="exception",
                    diagnostics=[d.model_dump() for d in diagnostics],
                )
            )
            await ctx.dispatch(
                CorrectFailureEvent(
                    source=source,
                    attempts=len(attempts),
                    reason="exception",
                    diagnostics=[d.model_dump() for d in diagnostics],
                )
            )
            logger.error("%s: compiler raised %s: %s", source, result.error_type, result.cause)
            return CorrectionFailure(
                artifact=artifact, diagnostics=diagnostics, attempts=attempts, reason="exception"
            )

        diagnostics = list(result.diagnostics)
        await ctx.dispatch(
            CompileValidateEvent(
                source=source,
                attempt=len(attempts) + 1,
                result="failure",
                diagnostics=[d.model_dump() for d in diagnostics],
            )
        )

        if len(attempts) >= max_attempts:
            state = _enter(source, state, CorrectionState.FAILED)
            logger.warning(
                "%s: correction budget of %d exhausted with %d diagnostic(s)",
                source,
                max_attempts,
                len(diagnostics),
            )
            await ctx.dispatch(
                CorrectFailureEvent(
                    source=source,
                    attempts=len(attempts),
                    reason="exhausted",
                    diagnostics=[d.model_dump() for d in diagnostics],
                )
            )
            return CorrectionFailure(artifact=artifact, diagnostics=diagnostics, attempts=attempts)

        state = _enter(source, state, CorrectionState.REPAIRING)
        record = CorrectionAttempt(index=len(attempts) + 1, input_artifact=artifact, diagnostics=diagnostics)
        before = TokenUsageComponent().increment(ctx.usage.facade)
        try:
            artifact = await repair(artifact, diagnostics, attempts)
        except PipelineCancelledError:
            raise
        except Exception as exc:
            state = _enter(source, state, CorrectionState.FAILED)
            logger.warning("%s: repair request failed: %s", source, exc)
            await ctx.dispatch(
                CorrectFailureEvent(
                    source=source,
                    attempts=len(attempts),
                    reason="repair",
                    diagnostics=[d.model_dump() for d in diagnostics],
                )
            )
            return CorrectionFailure(
                artifact=artifact, diagnostics=diagnostics, attempts=attempts, reason="repair"
            )
        record.output_artifact = artifact
        attempts.append(record)
        await ctx.dispatch(
            CorrectEvent(
                source=source,
                attempt=record.index,
                files=result.files(),
                token_usage=TokenUsageComponent.minus(ctx.usage.facade, before).to_json(),
            )
        )


__all__ = [
    "CorrectionAttempt",
    "CorrectionFailure",
    "CorrectionResult",
    "CorrectionState",
    "CorrectionSuccess",
    "correct",
]
