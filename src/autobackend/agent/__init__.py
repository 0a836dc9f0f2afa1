"""Core engine of the backend generation pipeline."""

from .models import Endpoint, Operation, Scenario, ScenarioGroup, SpecificationDocument
from .events import EventBus, Progress
from .token_usage import TokenUsage, TokenUsageComponent
from .state import PHASES, PipelineState, StateStore

__all__ = [
    "Endpoint",
    "EventBus",
    "Operation",
    "PHASES",
    "PipelineState",
    "Progress",
    "Scenario",
    "ScenarioGroup",
    "SpecificationDocument",
    "StateStore",
    "TokenUsage",
    "TokenUsageComponent",
]
