"""Abstract base class for AML risk rules."""

from abc import ABC, abstractmethod

from ..context import EvaluationContext
from ..models import Indicator, RuleResult


class AMLRule(ABC):
    """Base class for all AML rules.

    A rule reads the evaluation context and either fires once with its fixed
    ``score_delta`` or does not fire. Counter side effects happen through the
    context whether or not the rule fires.
    """

    rule_id: Indicator
    branch: str  # "actor" | "guest" | "common"
    score_delta: int

    @abstractmethod
    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        """Evaluate this rule and return a RuleResult."""
        ...

    def _not_triggered(self) -> RuleResult:
        return RuleResult(
            rule_name=self.rule_id.value,
            triggered=False,
            branch=self.branch,
        )

    def _triggered(self, details: str, evidence: dict | None = None) -> RuleResult:
        return RuleResult(
            rule_name=self.rule_id.value,
            triggered=True,
            score=self.score_delta,
            indicator=self.rule_id,
            details=details,
            evidence=evidence or {},
            branch=self.branch,
        )
