"""Pipeline state: one immutable slot per phase, replaced wholesale."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from autobackend.compiler.base import CompileResult, CompileSuccess

from .models import AuthorizationRole, SpecificationDocument, TestScenario

PHASES: Tuple[str, ...] = ("analyze", "prisma", "interface", "test", "realize")

# Artifacts a phase consumes; each must be present and not stale.
REQUIREMENTS: Dict[str, Tuple[str, ...]] = {
    "analyze": (),
    "prisma": ("analyze",),
    "interface": ("analyze", "prisma"),
    "test": ("interface",),
    "realize": ("prisma", "interface"),
}


def upstream(phase: str) -> Tuple[str, ...]:
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}")
    return PHASES[: PHASES.index(phase)]


class AnalyzeArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str
    roles: List[str] = Field(default_factory=list)
    files: Dict[str, str] = Field(default_factory=dict)


class SchemaArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: Dict[str, str] = Field(default_factory=dict)
    compiled: CompileResult = Field(default_factory=CompileSuccess)


class InterfaceArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    document: SpecificationDocument
    authorizations: List[AuthorizationRole] = Field(default_factory=list)
    compiled: CompileResult = Field(default_factory=CompileSuccess)


class TestArtifact(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True)

    scenarios: List[TestScenario] = Field(default_factory=list)
    files: Dict[str, str] = Field(default_factory=dict)
    compiled: CompileResult = Field(default_factory=CompileSuccess)


class RealizeArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: Dict[str, str] = Field(default_factory=dict)
    compiled: CompileResult = Field(default_factory=CompileSuccess)


class PhaseSlot(BaseModel):
    """Last accepted artifact of a phase and the versions it was built from."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    artifact: Any
    step: int
    basis: Dict[str, int] = Field(default_factory=dict)
    reason: str = ""
    completed_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class PipelineState(BaseModel):
    model_config = ConfigDict(frozen=True)

    analyze: Optional[PhaseSlot] = None
    prisma: Optional[PhaseSlot] = None
    interface: Optional[PhaseSlot] = None
    test: Optional[PhaseSlot] = None
    realize: Optional[PhaseSlot] = None

    def slot(self, phase: str) -> Optional[PhaseSlot]:
        if phase not in PHASES:
            raise ValueError(f"Unknown phase: {phase}")
        return getattr(self, phase)

    def step_of(self, phase: str) -> int:
        slot = self.slot(phase)
        return slot.step if slot is not None else 0

    def replace(self, phase: str, artifact: Any, reason: str = "") -> "PipelineState":
        """Return a new snapshot where ``phase`` holds ``artifact``."""

        slot = PhaseSlot(
            artifact=artifact,
            step=self.step_of(phase) + 1,
            basis={name: self.step_of(name) for name in upstream(phase)},
            reason=reason,
        )
        return self.model_copy(update={phase: slot})

    def is_stale(self, phase: str) -> bool:
        """True when an earlier phase was re-run after ``phase`` completed."""

        slot = self.slot(phase)
        if slot is None:
            return False
        return any(slot.basis.get(name, 0) != self.step_of(name) for name in upstream(phase))

    def fresh(self, phase: str) -> Optional[PhaseSlot]:
        slot = self.slot(phase)
        if slot is None or self.is_stale(phase):
            return None
        return slot

    def missing(self, phase: str) -> List[str]:
        return [name for name in REQUIREMENTS[phase] if self.fresh(name) is None]


class StateStore:
    """Holder of the current snapshot; replacement is a single reference swap."""

    def __init__(self, state: PipelineState | None = None) -> None:
        self._state = state or PipelineState()

    def get(self) -> PipelineState:
        return self._state

    def replace(self, phase: str, artifact: Any, reason: str = "") -> PhaseSlot:
        self._state = self._state.replace(phase, artifact, reason)
        slot = self._state.slot(phase)
        assert slot is not None
        return slot


__all__ = [
    "AnalyzeArtifact",
    "InterfaceArtifact",
    "PHASES",
    "PhaseSlot",
    "PipelineState",
    "REQUIREMENTS",
    "RealizeArtifact",
    "SchemaArtifact",
    "StateStore",
    "TestArtifact",
    "upstream",
]
