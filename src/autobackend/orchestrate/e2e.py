"""E2E test writing: one module per scenario, each corrected on its own."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from autobackend.agent.correction import CorrectionAttempt, correct
from autobackend.agent.dispatcher import FunctionSpec
from autobackend.agent.events import Progress, UnitFailureEvent
from autobackend.agent.models import SpecificationDocument, TestScenario
from autobackend.agent.prompts import TEST_CORRECT_PROMPT, TEST_WRITE_PROMPT
from autobackend.agent.state import TestArtifact
from autobackend.compiler.base import CompileException, Diagnostic
from autobackend.errors import CompilerCrashError, PhaseFailedError

from .common import render_diagnostics, run_units
from .histories import describe_operation, interface_histories

logger = logging.getLogger(__name__)

TEST_DIR = "tests/e2e"


class TestModule(BaseModel):
    __test__ = False

    content: str = Field(min_length=1, description="Complete Python module source.")


def assign_file_names(scenarios: Sequence[TestScenario]) -> List[Tuple[str, TestScenario]]:
    """``tests/e2e/<function_name>.py``, suffixing repeated names."""

    used: Dict[str, int] = {}
    named: List[Tuple[str, TestScenario]] = []
    for scenario in scenarios:
        count = used.get(scenario.function_name, 0) + 1
        used[scenario.function_name] = count
        stem = scenario.function_name if count == 1 else f"{scenario.function_name}_{count}"
        named.append((f"{TEST_DIR}/{stem}.py", scenario))
    return named


def _scenario_message(document: SpecificationDocument, scenario: TestScenario) -> str:
    operation = document.find(scenario.endpoint)
    dependencies = "\n".join(
        f"- `{dependency.endpoint}`: {dependency.purpose}" for dependency in scenario.dependencies
    )
    return (
        f"Function name: `{scenario.function_name}`\n"
        f"Target: `{scenario.endpoint}`\n\n"
        f"## Scenario\n\n{scenario.draft}\n\n"
        f"## Dependencies\n\n{dependencies or '-'}\n\n"
        f"## Operation\n\n```json\n{describe_operation(operation) if operation else '{}'}\n```"
    )


async def write_test_module(
    ctx: Any,
    document: SpecificationDocument,
    file_name: str,
    scenario: TestScenario,
    progress: Optional[Progress] = None,
) -> Optional[str]:
    """Write and correct one module; ``None`` when it never compiles."""

    histories = interface_histories(ctx, document, TEST_WRITE_PROMPT)
    message = _scenario_message(document, scenario)
    function = FunctionSpec("writeTest", "Submit the test module.", TestModule)

    async def generate() -> str:
        result = await ctx.conversate("testWrite", histories, [function], message=message, progress=progress)
        return result.value.content

    async def compile(source: str) -> Any:
        return await ctx.compile("test", {file_name: source}, source="testCorrect")

    async def repair(source: str, diagnostics: List[Diagnostic], attempts: List[CorrectionAttempt]) -> str:
        result = await ctx.conversate(
            "testCorrect",
            interface_histories(ctx, document, TEST_CORRECT_PROMPT),
            [FunctionSpec("fixTest", "Submit the corrected module.", TestModule)],
            message=(
                f"{message}\n\n## Diagnostics\n\n{render_diagnostics(diagnostics)}\n\n"
                f"## {file_name}\n\n```python\n{source}\n```"
            ),
        )
        return result.value.content

    outcome = await correct(generate, compile, repair, ctx.settings.RETRY, "testCorrect", ctx)
    if outcome.success:
        return outcome.artifact
    await ctx.dispatch(
        UnitFailureEvent(
            source="testCorrect",
            unit=file_name,
            error=f"{outcome.reason}: {render_diagnostics(outcome.diagnostics)}",
        )
    )
    return None


async def orchestrate_test_write(
    ctx: Any,
    document: SpecificationDocument,
    scenarios: Sequence[TestScenario],
) -> TestArtifact:
    named = assign_file_names(scenarios)
    progress = Progress(total=len(named))
    logger.info("Writing %d e2e test module(s)", len(named))

    def write(file_name: str, scenario: TestScenario):
        async def run() -> Optional[str]:
            return await write_test_module(ctx, document, file_name, scenario, progress)

        return run

    sources = await run_units(ctx, "testWrite", [(name, write(name, scenario)) for name, scenario in named])
    files: Dict[str, str] = {}
    kept: List[TestScenario] = []
    for (file_name, scenario), source in zip(named, sources):
        if source is not None:
            files[file_name] = source
            kept.append(scenario)
    if named and not files:
        raise PhaseFailedError("test", "no e2e test module compiled")

    compiled = await ctx.compile("test", files, source="testWrite")
    artifact = TestArtifact(scenarios=kept, files=files, compiled=compiled)
    if isinstance(compiled, CompileException):
        raise CompilerCrashError("test", compiled.cause, artifact=artifact)
    return artifact


__all__ = ["TestModule", "assign_file_names", "orchestrate_test_write", "write_test_module"]
