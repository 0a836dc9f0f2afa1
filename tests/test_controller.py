from __future__ import annotations

import pytest

from autobackend.__main__ import collect_files
from autobackend.agent.controller import PipelineController, PipelineStatus
from autobackend.agent.state import PHASES
from autobackend.errors import CompilerCrashError, PhaseFailedError, PipelineCancelledError, PrerequisiteError

POST_MODULE = "from app.models.base import Base\n\n\nclass Post(Base):\n    __tablename__ = 'posts'\n"

OPERATIONS = [
    {
        "method": "post",
        "path": "/posts",
        "name": "create",
        "summary": "Create a post",
        "request_body": {"type_name": "IPost.ICreate"},
        "response_body": {"type_name": "IPost"},
    },
    {
        "method": "post",
        "path": "/votes",
        "name": "create",
        "summary": "Vote on a post",
        "request_body": {"type_name": "IVote.ICreate"},
    },
    {
        "method": "delete",
        "path": "/votes/{id}",
        "name": "erase",
        "summary": "Retract a vote",
        "parameters": [{"name": "id", "schema": {"type": "string"}}],
    },
]

SCHEMAS = {
    "IPost.ICreate": {"type": "object", "properties": {"title": {"type": "string"}}},
    "IPost": {"type": "object", "properties": {"id": {"type": "string"}}},
    "IVote.ICreate": {"type": "object", "properties": {"postId": {"type": "string"}}},
}


def _group(method: str, path: str, name: str) -> dict:
    return {
        "endpoint": {"method": method, "path": path},
        "scenarios": [{"draft": f"Check {method} {path}", "function_name": name}],
    }


def _handlers() -> dict:
    return {
        "planDocuments": {
            "prefix": "bbs",
            "roles": ["member"],
            "files": [
                {"filename": "overview.md", "reason": "Service overview"},
                {"filename": "voting.md", "reason": "Voting rules"},
            ],
        },
        "writeDocument": {"content": "# Requirements\n\nMembers write posts and vote."},
        "makeComponents": {
            "components": [
                {"filename": "posts.py", "namespace": "Posts", "tables": ["posts"]},
                {"filename": "votes.py", "namespace": "Votes", "tables": ["votes", "posts"]},
            ]
        },
        "writeModule": {"content": POST_MODULE},
        "makeEndpoints": {"endpoints": [{"method": op["method"], "path": op["path"]} for op in OPERATIONS]},
        "makeOperations": {"operations": OPERATIONS},
        "makeSchemas": {"schemas": SCHEMAS},
        "makeTestScenarios": {
            "groups": [
                _group("post", "/posts", "test_create_post"),
                _group("post", "/votes", "test_create_vote"),
                _group("delete", "/votes/{id}", "test_erase_vote"),
            ]
        },
        "review": {"groups": [_group("delete", "/votes/{id}", "test_erase_own_vote")]},
        "writeTest": {"content": "async def test_case(client):\n    assert client is not None\n"},
        "writeProvider": {"content": "async def provider():\n    return None\n"},
    }


@pytest.fixture
def controller(ctx, fake_model):
    fake_model.handlers.update(_handlers())
    return PipelineController(ctx)


@pytest.mark.asyncio
async def test_run_completes_every_phase(ctx, controller):
    result = await controller.run("A bulletin board where members vote on posts.")

    assert result["completed"] == list(PHASES)
    assert not result.get("failed")
    assert controller.status is PipelineStatus.DONE
    state = ctx.state
    assert all(state.step_of(phase) == 1 for phase in PHASES)
    assert [event.phase for event in ctx.bus.of_type("phaseComplete")] == list(PHASES)

    assert sorted(state.analyze.artifact.files) == ["docs/analysis/overview.md", "docs/analysis/voting.md"]
    assert sorted(state.prisma.artifact.files) == [
        "app/models/base.py",
        "app/models/posts.py",
        "app/models/votes.py",
    ]
    assert [str(e) for e in state.interface.artifact.document.endpoints()] == [
        "POST /posts",
        "POST /votes",
        "DELETE /votes/{id}",
    ]
    test_artifact = state.test.artifact
    assert sorted(test_artifact.files) == [
        "tests/e2e/test_create_post.py",
        "tests/e2e/test_create_vote.py",
        "tests/e2e/test_erase_own_vote.py",
    ]
    assert test_artifact.compiled.type == "success"
    assert "app/providers/delete_votes_by_id.py" in state.realize.artifact.files

    files = collect_files(state)
    assert "openapi.json" in files
    assert "tests/e2e/test_create_post.py" in files
    assert ctx.usage.facade.total == sum(
        getattr(ctx.usage, phase).total for phase in PHASES
    )
    assert ctx.usage.test.total > 0


@pytest.mark.asyncio
async def test_schema_phase_repairs_only_failing_modules(ctx, controller, fake_model):
    fake_model.handlers["makeComponents"] = {
        "components": [
            {"filename": "posts.py", "namespace": "Posts", "tables": ["posts"]},
            {"filename": "votes.py", "namespace": "Votes", "tables": ["votes"]},
        ]
    }

    def write_module(messages):
        request = messages[-1].content
        if "votes.py" in request.splitlines()[0]:
            return {"content": "class Vote(:\n    pass\n"}
        return {"content": POST_MODULE}

    fake_model.handlers["writeModule"] = write_module
    fake_model.handlers["fixModules"] = {
        "files": [
            {"filename": "app/models/votes.py", "content": "class Vote:\n    pass\n"},
            {"filename": "app/models/posts.py", "content": "garbage("},
        ]
    }

    await controller.analyze("Voting board")
    slot = await controller.prisma()

    files = slot.artifact.files
    assert files["app/models/votes.py"] == "class Vote:\n    pass\n"
    assert files["app/models/posts.py"] == POST_MODULE
    corrections = ctx.bus.of_type("correct")
    assert [event.files for event in corrections] == [["app/models/votes.py"]]


class CrashingCompiler:
    async def compile(self, files):
        raise RuntimeError("compiler exploded")


@pytest.mark.asyncio
async def test_compiler_crash_fails_the_phase_with_its_draft(ctx, controller):
    ctx.compilers.schema = CrashingCompiler()
    await controller.analyze("Voting board")

    with pytest.raises(CompilerCrashError) as info:
        await controller.prisma()

    assert info.value.phase == "prisma"
    assert "compiler exploded" in str(info.value)
    assert "app/models/posts.py" in info.value.artifact.files
    assert ctx.state.prisma is None
    assert ctx.bus.of_type("phaseFailure")[0].error_type == "CompilerCrashError"
    assert ctx.bus.of_type("correctFailure")[0].reason == "exception"


@pytest.mark.asyncio
async def test_phase_without_prerequisites_is_rejected(ctx, controller):
    with pytest.raises(PrerequisiteError) as info:
        await controller.prisma()

    assert info.value.missing == ["analyze"]
    failure = ctx.bus.of_type("phaseFailure")[0]
    assert failure.phase == "prisma"
    assert failure.error_type == "PrerequisiteError"
    assert controller.status is PipelineStatus.IDLE


@pytest.mark.asyncio
async def test_failure_halts_the_graph_and_keeps_earlier_slots(ctx, controller, fake_model):
    fake_model.handlers["makeEndpoints"] = {"endpoints": []}

    result = await controller.run("A bulletin board")

    assert result["completed"] == ["analyze", "prisma"]
    assert result["failed"] == "interface"
    assert controller.status is PipelineStatus.FAILED
    assert ctx.state.fresh("prisma") is not None
    assert ctx.state.interface is None
    assert ctx.state.test is None
    failure = ctx.bus.of_type("phaseFailure")[0]
    assert failure.phase == "interface"
    assert failure.error_type == "FunctionCallingError"
    assert fake_model.calls_for("makeTestScenarios") == []


@pytest.mark.asyncio
async def test_direct_phase_failure_raises_phase_error(ctx, controller, fake_model):
    fake_model.handlers["planDocuments"] = RuntimeError("vendor down")

    with pytest.raises(PhaseFailedError) as info:
        await controller.analyze("A bulletin board")

    assert info.value.phase == "analyze"
    assert ctx.state.analyze is None


@pytest.mark.asyncio
async def test_rerunning_schema_marks_downstream_stale(ctx, controller):
    await controller.run("A bulletin board")

    slot = await controller.prisma(reason="user feedback")

    assert slot.step == 2
    assert ctx.state.is_stale("interface")
    assert ctx.state.is_stale("test")
    assert ctx.state.is_stale("realize")
    assert ctx.state.interface.artifact is not None
    assert controller.status is PipelineStatus.SCHEMA_DESIGNING
    with pytest.raises(PrerequisiteError):
        await controller.test()

    await controller.interface()
    assert not ctx.state.is_stale("interface")
    assert ctx.state.is_stale("test")


@pytest.mark.asyncio
async def test_cancellation_emits_event(ctx, controller):
    ctx.cancel()

    with pytest.raises(PipelineCancelledError):
        await controller.analyze("A bulletin board")

    assert controller.status is PipelineStatus.CANCELLED
    assert ctx.bus.of_type("cancelled")[0].source == "analyze"
    assert ctx.state.analyze is None
