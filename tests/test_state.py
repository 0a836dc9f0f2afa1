from __future__ import annotations

import pytest

from autobackend.agent.state import (
    AnalyzeArtifact,
    PipelineState,
    SchemaArtifact,
    StateStore,
    upstream,
)


def _run(state: PipelineState, *phases: str) -> PipelineState:
    for phase in phases:
        state = state.replace(phase, object(), reason=f"run {phase}")
    return state


def test_replace_returns_new_snapshot():
    original = PipelineState()
    updated = original.replace("analyze", AnalyzeArtifact(prefix="bbs"))

    assert original.analyze is None
    assert updated.analyze.step == 1
    assert updated.analyze.artifact.prefix == "bbs"
    assert updated.replace("analyze", AnalyzeArtifact(prefix="bbs")).analyze.step == 2


def test_basis_records_upstream_steps():
    state = _run(PipelineState(), "analyze", "analyze", "prisma")

    assert state.prisma.basis == {"analyze": 2}


def test_rerunning_an_earlier_phase_marks_later_slots_stale():
    state = _run(PipelineState(), "analyze", "prisma", "interface", "test")

    assert not any(state.is_stale(phase) for phase in ("analyze", "prisma", "interface", "test"))

    state = state.replace("prisma", SchemaArtifact(), reason="feedback")

    assert not state.is_stale("prisma")
    assert state.is_stale("interface")
    assert state.is_stale("test")
    assert state.interface is not None
    assert state.fresh("interface") is None
    assert state.missing("test") == ["interface"]
    assert state.missing("realize") == ["interface"]


def test_missing_reports_absent_prerequisites():
    state = PipelineState()

    assert state.missing("analyze") == []
    assert state.missing("prisma") == ["analyze"]
    assert state.missing("realize") == ["prisma", "interface"]


def test_unknown_phase_is_rejected():
    with pytest.raises(ValueError):
        PipelineState().slot("deploy")
    with pytest.raises(ValueError):
        upstream("deploy")


def test_store_swaps_snapshot():
    store = StateStore()
    before = store.get()

    slot = store.replace("analyze", AnalyzeArtifact(prefix="shop"), reason="initial")

    assert store.get() is not before
    assert slot is store.get().analyze
    assert slot.reason == "initial"
    assert before.analyze is None
