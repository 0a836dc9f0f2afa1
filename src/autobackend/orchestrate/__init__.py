"""Phase orchestrators of the generation pipeline."""

from .analyze import orchestrate_analyze
from .e2e import orchestrate_test_write
from .interface import orchestrate_interface
from .realize import orchestrate_realize
from .scenario import orchestrate_test_scenario, unique_scenario_groups
from .scenario_review import (
    ReviewFallback,
    ReviewRevised,
    orchestrate_test_scenario_review,
    review_scenario_groups,
)
from .schema import orchestrate_prisma

__all__ = [
    "ReviewFallback",
    "ReviewRevised",
    "orchestrate_analyze",
    "orchestrate_interface",
    "orchestrate_prisma",
    "orchestrate_realize",
    "orchestrate_test_scenario",
    "orchestrate_test_scenario_review",
    "orchestrate_test_write",
    "review_scenario_groups",
    "unique_scenario_groups",
]
