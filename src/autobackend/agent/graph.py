"""LangGraph wiring of the pipeline: one node per phase, END on failure."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, TypedDict

from langgraph.graph import END, START, StateGraph

from autobackend.errors import AutoBackendError, PipelineCancelledError
from autobackend.llm.tracing import get_callbacks

from .state import PHASES

logger = logging.getLogger(__name__)


class PipelineGraphState(TypedDict, total=False):
    requirements: str
    completed: List[str]
    failed: Optional[str]
    error: Optional[str]


def _make_node(controller: Any, phase: str) -> Callable[[PipelineGraphState], Any]:
    async def node(state: PipelineGraphState) -> Dict[str, Any]:
        try:
            if phase == "analyze":
                await controller.analyze(state.get("requirements") or None)
            else:
                await getattr(controller, phase)()
        except PipelineCancelledError:
            raise
        except AutoBackendError as exc:
            return {"failed": phase, "error": str(exc)}
        return {"completed": [*state.get("completed", []), phase]}

    node.__name__ = f"{phase}_node"
    return node


def route_after(phase: str, next_phase: str) -> Callable[[PipelineGraphState], str]:
    def route(state: PipelineGraphState) -> str:
        if state.get("failed"):
            logger.info("Stopping after %s: %s", state["failed"], state.get("error"))
            return END
        return next_phase

    route.__name__ = f"route_after_{phase}"
    return route


def build_pipeline_graph(controller: Any, phases: Sequence[str] = PHASES):
    g = StateGraph(PipelineGraphState)
    for phase in phases:
        g.add_node(phase, _make_node(controller, phase))

    g.add_edge(START, phases[0])
    for phase, next_phase in zip(phases, phases[1:]):
        g.add_conditional_edges(phase, route_after(phase, next_phase), {next_phase: next_phase, END: END})
    g.add_edge(phases[-1], END)

    callbacks = get_callbacks()
    if callbacks:
        return g.compile().with_config({"callbacks": callbacks})
    return g.compile()


__all__ = ["PipelineGraphState", "build_pipeline_graph", "route_after"]
