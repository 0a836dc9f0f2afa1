"""Token usage accounting per pipeline phase."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping

STAGES = ("analyze", "prisma", "interface", "test", "realize")


@dataclass
class InputUsage:
    total: int = 0
    cached: int = 0


@dataclass
class OutputUsage:
    total: int = 0
    reasoning: int = 0
    accepted_prediction: int = 0
    rejected_prediction: int = 0


@dataclass
class TokenUsageComponent:
    """Token counters of one vendor call, sub-stage or phase.

    ``total`` always equals ``input.total + output.total``.
    """

    input: InputUsage = field(default_factory=InputUsage)
    output: OutputUsage = field(default_factory=OutputUsage)

    @property
    def total(self) -> int:
        return self.input.total + self.output.total

    def increment(self, other: "TokenUsageComponent") -> "TokenUsageComponent":
        self.input.total += other.input.total
        self.input.cached += other.input.cached
        self.output.total += other.output.total
        self.output.reasoning += other.output.reasoning
        self.output.accepted_prediction += other.output.accepted_prediction
        self.output.rejected_prediction += other.output.rejected_prediction
        return self

    @classmethod
    def plus(cls, a: "TokenUsageComponent", b: "TokenUsageComponent") -> "TokenUsageComponent":
        return cls().increment(a).increment(b)

    @classmethod
    def minus(cls, a: "TokenUsageComponent", b: "TokenUsageComponent") -> "TokenUsageComponent":
        """Difference ``a - b`` clamped at zero, used for cumulative snapshots."""

        return cls(
            input=InputUsage(
                total=max(0, a.input.total - b.input.total),
                cached=max(0, a.input.cached - b.input.cached),
            ),
            output=OutputUsage(
                total=max(0, a.output.total - b.output.total),
                reasoning=max(0, a.output.reasoning - b.output.reasoning),
                accepted_prediction=max(
                    0, a.output.accepted_prediction - b.output.accepted_prediction
                ),
                rejected_prediction=max(
                    0, a.output.rejected_prediction - b.output.rejected_prediction
                ),
            ),
        )

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, Any] | None) -> "TokenUsageComponent":
        """Build a component from LangChain ``AIMessage.usage_metadata``."""

        if not metadata:
            return cls()
        input_details = metadata.get("input_token_details") or {}
        output_details = metadata.get("output_token_details") or {}
        return cls(
            input=InputUsage(
                total=max(0, int(metadata.get("input_tokens") or 0)),
                cached=max(0, int(input_details.get("cache_read") or 0)),
            ),
            output=OutputUsage(
                total=max(0, int(metadata.get("output_tokens") or 0)),
                reasoning=max(0, int(output_details.get("reasoning") or 0)),
                accepted_prediction=max(0, int(output_details.get("accepted_prediction") or 0)),
                rejected_prediction=max(0, int(output_details.get("rejected_prediction") or 0)),
            ),
        )

    @classmethod
    def from_message(cls, message: Any) -> "TokenUsageComponent":
        return cls.from_metadata(getattr(message, "usage_metadata", None))

    def to_json(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "input": {"total": self.input.total, "cached": self.input.cached},
            "output": {
                "total": self.output.total,
                "reasoning": self.output.reasoning,
                "accepted_prediction": self.output.accepted_prediction,
                "rejected_prediction": self.output.rejected_prediction,
            },
        }


@dataclass
class TokenUsage:
    """Aggregate usage: ``facade`` sums everything, stages hold their own share."""

    facade: TokenUsageComponent = field(default_factory=TokenUsageComponent)
    analyze: TokenUsageComponent = field(default_factory=TokenUsageComponent)
    prisma: TokenUsageComponent = field(default_factory=TokenUsageComponent)
    interface: TokenUsageComponent = field(default_factory=TokenUsageComponent)
    test: TokenUsageComponent = field(default_factory=TokenUsageComponent)
    realize: TokenUsageComponent = field(default_factory=TokenUsageComponent)

    def record(self, usage: TokenUsageComponent, stages: Iterable[str] = ()) -> None:
        self.facade.increment(usage)
        for stage in stages:
            if stage not in STAGES:
                raise ValueError(f"Unknown token usage stage: {stage}")
            getattr(self, stage).increment(usage)

    def to_json(self) -> Dict[str, Any]:
        return {key: getattr(self, key).to_json() for key in ("facade", *STAGES)}


def stage_of(source: str) -> str:
    """Map an event source such as ``testScenariosReview`` to its phase."""

    for stage in STAGES:
        if source.startswith(stage):
            return stage
    return "analyze"


__all__ = [
    "InputUsage",
    "OutputUsage",
    "STAGES",
    "TokenUsage",
    "TokenUsageComponent",
    "stage_of",
]
