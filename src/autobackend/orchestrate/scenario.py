"""Test scenario planning: scenario groups per endpoint, in batches."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from autobackend.agent.dependency import build_dependency_table, format_dependency_table
from autobackend.agent.dispatcher import FieldError, FunctionSpec, ValidationFailure, ValidationSuccess
from autobackend.agent.events import Progress, TestScenarioEvent
from autobackend.agent.models import (
    AuthorizationRole,
    Endpoint,
    Operation,
    ScenarioGroup,
    SpecificationDocument,
    TestScenario,
)
from autobackend.agent.prompts import TEST_SCENARIO_PROMPT
from autobackend.errors import PhaseFailedError
from autobackend.utils.batch import divide_array

from .common import run_units
from .histories import authorization_context, interface_histories

logger = logging.getLogger(__name__)

SCENARIO_CAPACITY = 5


class ScenarioPlan(BaseModel):
    groups: List[ScenarioGroup] = Field(
        min_length=1, description="One group per requested endpoint."
    )


def unique_scenario_groups(groups: Iterable[ScenarioGroup]) -> List[ScenarioGroup]:
    """One group per endpoint; a later group replaces an earlier one."""

    merged: Dict[Endpoint, ScenarioGroup] = {}
    for group in groups:
        merged[group.endpoint] = group
    return list(merged.values())


def endpoint_not_found(unknown: Sequence[Endpoint], known: Sequence[Endpoint]) -> str:
    lines = [
        "The following endpoints do not exist in the API specification:",
        *(f"- `{endpoint}`" for endpoint in unknown),
        "",
        "Use only these endpoints:",
        "",
        "Method | Path",
        "-------|-----",
        *(f"`{endpoint.method}` | `{endpoint.path}`" for endpoint in known),
    ]
    return "\n".join(lines)


def scenario_validator(targets: Sequence[Endpoint], known: Sequence[Endpoint]):
    """Discard groups for endpoints outside ``targets``; reject unknown dependencies."""

    target_set = set(targets)
    known_set = set(known)

    def validate(data: ScenarioPlan):
        groups = [group for group in data.groups if group.endpoint in target_set]
        if not groups:
            return ValidationFailure(
                data=data,
                errors=[
                    FieldError(
                        path="$input.groups",
                        expected="groups for: " + ", ".join(str(e) for e in targets),
                        message="no group targets a requested endpoint",
                    )
                ],
            )
        errors: List[FieldError] = []
        unknown: Dict[Endpoint, None] = {}
        for i, group in enumerate(data.groups):
            if group.endpoint not in target_set:
                continue
            for j, scenario in enumerate(group.scenarios):
                for k, dependency in enumerate(scenario.dependencies):
                    if dependency.endpoint not in known_set:
                        unknown.setdefault(dependency.endpoint, None)
                        errors.append(
                            FieldError(
                                path=f"$input.groups[{i}].scenarios[{j}].dependencies[{k}].endpoint",
                                expected="an endpoint of the API specification",
                                message=f"unknown endpoint {dependency.endpoint}",
                                value=dependency.endpoint.model_dump(),
                            )
                        )
        if errors:
            errors.append(
                FieldError(
                    path="$input.groups",
                    expected="known endpoints",
                    message=endpoint_not_found(list(unknown), known),
                )
            )
            return ValidationFailure(data=data, errors=errors)
        return ValidationSuccess(data=ScenarioPlan(groups=unique_scenario_groups(groups)))

    return validate


async def orchestrate_test_scenario(
    ctx: Any,
    document: SpecificationDocument,
    step: int = 0,
    authorizations: Optional[Sequence[AuthorizationRole]] = None,
) -> List[ScenarioGroup]:
    """Plan scenario groups until every endpoint is covered or rounds run out."""

    operations: Dict[Endpoint, Operation] = {op.endpoint: op for op in document.operations}
    known = list(operations)
    table = {row.endpoint: row for row in build_dependency_table(document)}
    roles = list(authorizations) if authorizations is not None else document.authorizations()
    collected: List[ScenarioGroup] = []

    for round_index in range(max(1, ctx.settings.RETRY)):
        covered = {group.endpoint for group in collected}
        remaining = [endpoint for endpoint in known if endpoint not in covered]
        if not remaining:
            break
        batches = divide_array(remaining, SCENARIO_CAPACITY)
        logger.info(
            "Scenario round %d: %d endpoint(s) in %d batch(es)", round_index + 1, len(remaining), len(batches)
        )
        progress = Progress(total=len(batches))

        def plan(batch: List[Endpoint]):
            async def run() -> List[ScenarioGroup]:
                result = await ctx.conversate(
                    "testScenario",
                    interface_histories(ctx, document, TEST_SCENARIO_PROMPT),
                    [
                        FunctionSpec(
                            "makeTestScenarios",
                            "Submit scenario groups for the requested endpoints.",
                            ScenarioPlan,
                            validate=scenario_validator(batch, known),
                        )
                    ],
                    message=(
                        "Plan scenarios for these endpoints:\n\n"
                        + "\n\n".join(
                            f"```json\n{operations[e].model_dump_json(by_alias=True, exclude_none=True, indent=2)}\n```"
                            for e in batch
                        )
                        + "\n\n## Candidate dependencies\n\n"
                        + format_dependency_table(table[e] for e in batch)
                        + "\n\n## Related authentication APIs\n\n"
                        + authorization_context((operations[e] for e in batch), roles)
                    ),
                    progress=progress,
                )
                return result.value.groups

            return run

        planned = await run_units(
            ctx, "testScenario", [(", ".join(str(e) for e in batch), plan(batch)) for batch in batches]
        )
        for groups in planned:
            collected.extend(groups or ())
        collected = unique_scenario_groups(collected)

    uncovered = [str(e) for e in known if e not in {g.endpoint for g in collected}]
    if uncovered:
        logger.warning("No scenario could be planned for: %s", ", ".join(uncovered))
    if not collected:
        raise PhaseFailedError("test", "no test scenario could be planned")

    await ctx.dispatch(TestScenarioEvent(step=step, scenarios=TestScenario.flatten(collected)))
    return collected


__all__ = [
    "SCENARIO_CAPACITY",
    "ScenarioPlan",
    "endpoint_not_found",
    "orchestrate_test_scenario",
    "scenario_validator",
    "unique_scenario_groups",
]
