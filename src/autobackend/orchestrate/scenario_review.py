"""Review of planned test scenarios.

The review can only refine scenario content. Whatever the model returns is
mapped back onto the original groups, so endpoint coverage never changes,
and any failure falls back to the original groups.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Union

from autobackend.agent.dependency import build_dependency_table, format_dependency_table
from autobackend.agent.dispatcher import FunctionSpec, ValidationSuccess
from autobackend.agent.events import Progress, ReviewFallbackEvent, TestScenariosReviewEvent
from autobackend.agent.models import ScenarioGroup, SpecificationDocument, TestScenario
from autobackend.agent.prompts import TEST_SCENARIO_REVIEW_PROMPT
from autobackend.agent.token_usage import TokenUsageComponent
from autobackend.errors import PipelineCancelledError
from autobackend.utils.batch import divide_array, execute_batch

from .histories import interface_histories
from .scenario import ScenarioPlan, unique_scenario_groups

logger = logging.getLogger(__name__)

REVIEW_CAPACITY = 5


@dataclass
class ReviewRevised:
    groups: List[ScenarioGroup]
    revised: bool = True


@dataclass
class ReviewFallback:
    groups: List[ScenarioGroup]
    reason: str
    revised: bool = False


ReviewResult = Union[ReviewRevised, ReviewFallback]


def merge_reviewed(original: Sequence[ScenarioGroup], reviewed: Sequence[ScenarioGroup]) -> List[ScenarioGroup]:
    """Exactly one group per original endpoint, in original order."""

    revised = {group.endpoint: group for group in unique_scenario_groups(reviewed)}
    return [revised.get(group.endpoint, group) for group in unique_scenario_groups(original)]


def _keep_original_endpoints(original: Sequence[ScenarioGroup]):
    def validate(data: ScenarioPlan):
        return ValidationSuccess(data=ScenarioPlan.model_construct(groups=merge_reviewed(original, data.groups)))

    return validate


async def review_scenario_groups(
    ctx: Any,
    document: SpecificationDocument,
    groups: Sequence[ScenarioGroup],
    instruction: str = "",
    progress: Optional[Progress] = None,
    step: int = 0,
) -> ReviewResult:
    original = unique_scenario_groups(groups)
    before = TokenUsageComponent().increment(ctx.usage.test)
    try:
        result = await ctx.conversate(
            "testScenariosReview",
            interface_histories(ctx, document, TEST_SCENARIO_REVIEW_PROMPT),
            [
                FunctionSpec(
                    "review",
                    "Submit the revised scenario groups.",
                    ScenarioPlan,
                    validate=_keep_original_endpoints(original),
                )
            ],
            message=(
                (f"{instruction}\n\n" if instruction else "")
                + "## Candidate dependencies\n\n"
                + format_dependency_table(build_dependency_table(document))
                + "\n\n## Scenarios to review\n\n```json\n"
                + ScenarioPlan(groups=original).model_dump_json(indent=2)
                + "\n```"
            ),
        )
        outcome: ReviewResult = ReviewRevised(groups=merge_reviewed(original, result.value.groups))
        usage = result.token_usage
    except PipelineCancelledError:
        raise
    except Exception as exc:
        logger.warning("Scenario review failed, keeping %d original group(s): %s", len(original), exc)
        await ctx.dispatch(
            ReviewFallbackEvent(source="testScenariosReview", reason=str(exc), groups=len(original))
        )
        outcome = ReviewFallback(groups=original, reason=str(exc))
        usage = TokenUsageComponent.minus(ctx.usage.test, before)

    if progress is not None:
        progress.advance(len(original))
        await ctx.dispatch(
            TestScenariosReviewEvent(
                step=step,
                completed=progress.completed,
                total=progress.total,
                scenarios=TestScenario.flatten(outcome.groups),
                token_usage=usage.to_json(),
            )
        )
    return outcome


async def orchestrate_test_scenario_review(
    ctx: Any,
    document: SpecificationDocument,
    groups: Sequence[ScenarioGroup],
    instruction: str = "",
    step: int = 0,
) -> List[ScenarioGroup]:
    original = unique_scenario_groups(groups)
    batches = divide_array(original, REVIEW_CAPACITY)
    progress = Progress(total=len(original))

    def review(batch: List[ScenarioGroup]):
        async def run() -> ReviewResult:
            return await review_scenario_groups(ctx, document, batch, instruction, progress, step)

        return run

    results = await execute_batch([review(batch) for batch in batches], ctx.semaphore())
    reviewed = [group for result in results for group in result.groups]
    return merge_reviewed(original, reviewed)


__all__ = [
    "ReviewFallback",
    "ReviewResult",
    "ReviewRevised",
    "merge_reviewed",
    "orchestrate_test_scenario_review",
    "review_scenario_groups",
]
