"""Pipeline controller: sequences the phases over the shared state."""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from langchain_core.messages import HumanMessage

from autobackend.errors import PhaseFailedError, PipelineCancelledError, PrerequisiteError

from .events import CancelledEvent, PhaseCompleteEvent, PhaseFailureEvent, PhaseStartEvent
from .models import TestScenario
from .state import PHASES, PhaseSlot
from .token_usage import TokenUsageComponent

logger = logging.getLogger(__name__)


class PipelineStatus(str, enum.Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    SCHEMA_DESIGNING = "schemaDesigning"
    INTERFACE_DESIGNING = "interfaceDesigning"
    TEST_GENERATING = "testGenerating"
    IMPLEMENTING = "implementing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


PHASE_STATUS: Dict[str, PipelineStatus] = {
    "analyze": PipelineStatus.ANALYZING,
    "prisma": PipelineStatus.SCHEMA_DESIGNING,
    "interface": PipelineStatus.INTERFACE_DESIGNING,
    "test": PipelineStatus.TEST_GENERATING,
    "realize": PipelineStatus.IMPLEMENTING,
}


class PipelineController:
    def __init__(self, ctx: Any) -> None:
        self.ctx = ctx
        self.status = PipelineStatus.IDLE

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def analyze(self, requirements: Optional[str] = None, reason: str = "") -> PhaseSlot:
        from autobackend.orchestrate.analyze import orchestrate_analyze

        if requirements:
            self.ctx.histories.append(HumanMessage(content=requirements))
        return await self._run_phase("analyze", lambda: orchestrate_analyze(self.ctx), reason)

    async def prisma(self, reason: str = "") -> PhaseSlot:
        from autobackend.orchestrate.schema import orchestrate_prisma

        async def run() -> Any:
            return await orchestrate_prisma(self.ctx, self._artifact("analyze"))

        return await self._run_phase("prisma", run, reason)

    async def interface(self, reason: str = "") -> PhaseSlot:
        from autobackend.orchestrate.interface import orchestrate_interface

        async def run() -> Any:
            return await orchestrate_interface(self.ctx, self._artifact("analyze"), self._artifact("prisma"))

        return await self._run_phase("interface", run, reason)

    async def test(self, instruction: str = "", reason: str = "") -> PhaseSlot:
        from autobackend.orchestrate.e2e import orchestrate_test_write
        from autobackend.orchestrate.scenario import orchestrate_test_scenario
        from autobackend.orchestrate.scenario_review import orchestrate_test_scenario_review

        async def run() -> Any:
            interface = self._artifact("interface")
            document = interface.document
            step = self.ctx.state.step_of("interface")
            groups = await orchestrate_test_scenario(self.ctx, document, step, interface.authorizations)
            groups = await orchestrate_test_scenario_review(self.ctx, document, groups, instruction, step)
            return await orchestrate_test_write(self.ctx, document, TestScenario.flatten(groups))

        return await self._run_phase("test", run, reason)

    async def realize(self, reason: str = "") -> PhaseSlot:
        from autobackend.orchestrate.realize import orchestrate_realize

        async def run() -> Any:
            return await orchestrate_realize(
                self.ctx, self._artifact("prisma"), self._artifact("interface").document
            )

        return await self._run_phase("realize", run, reason)

    async def run(self, requirements: Optional[str] = None) -> Dict[str, Any]:
        """Run every phase in order through the LangGraph pipeline."""

        from .graph import build_pipeline_graph

        graph = build_pipeline_graph(self)
        return await graph.ainvoke({"requirements": requirements or "", "completed": []})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _artifact(self, phase: str) -> Any:
        slot = self.ctx.state.fresh(phase)
        if slot is None:
            raise PrerequisiteError(phase, [phase])
        return slot.artifact

    async def _run_phase(self, phase: str, factory: Callable[[], Awaitable[Any]], reason: str) -> PhaseSlot:
        ctx = self.ctx
        missing = ctx.state.missing(phase)
        if missing:
            error = PrerequisiteError(phase, missing)
            await ctx.dispatch(PhaseFailureEvent(phase=phase, cause=str(error), error_type="PrerequisiteError"))
            raise error

        self.status = PHASE_STATUS[phase]
        step = ctx.state.step_of(phase) + 1
        logger.info("Phase %s started (step %d)", phase, step)
        await ctx.dispatch(PhaseStartEvent(phase=phase, reason=reason, step=step))
        before = TokenUsageComponent().increment(getattr(ctx.usage, phase))
        started = time.monotonic()

        try:
            ctx.check_cancelled(phase)
            artifact = await factory()
        except PipelineCancelledError as exc:
            self.status = PipelineStatus.CANCELLED
            logger.warning("Phase %s cancelled", phase)
            await ctx.dispatch(CancelledEvent(source=exc.source or phase))
            raise
        except Exception as exc:
            self.status = PipelineStatus.FAILED
            logger.error("Phase %s failed: %s", phase, exc)
            await ctx.dispatch(
                PhaseFailureEvent(phase=phase, cause=str(exc), error_type=exc.__class__.__name__)
            )
            if isinstance(exc, PhaseFailedError):
                raise
            raise PhaseFailedError(phase, exc) from exc

        slot = ctx.store.replace(phase, artifact, reason)
        elapsed = time.monotonic() - started
        if all(ctx.state.fresh(name) is not None for name in PHASES):
            self.status = PipelineStatus.DONE
        delta = TokenUsageComponent.minus(getattr(ctx.usage, phase), before)
        logger.info("Phase %s completed (step %d, %.1fs, %d tokens)", phase, slot.step, elapsed, delta.total)
        await ctx.dispatch(
            PhaseCompleteEvent(phase=phase, step=slot.step, elapsed=elapsed, token_usage=delta.to_json())
        )
        return slot


__all__ = ["PHASE_STATUS", "PipelineController", "PipelineStatus"]
