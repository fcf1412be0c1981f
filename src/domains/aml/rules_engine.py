"""Rule-based AML engine with additive bounded scoring."""

import structlog

from .context import EvaluationContext
from .models import MAX_SCORE, RuleResult, Verdict, classify_status
from .rules import ACTOR_RULES, COMMON_RULES, GUEST_RULES, AMLRule

logger = structlog.get_logger()


class RulesEngine:
    """Evaluates a payment against the AML rule set.

    Scoring is additive (0-100):
    1. Pick the actor branch when the payment has a user, otherwise the guest
       branch when a phone or email is present
    2. Add the cross-cutting rules
    3. Run rules sequentially; a failing rule contributes nothing
    4. Score = sum of triggered deltas, clamped to [0, 100]
    5. Status from the fixed review/block thresholds
    """

    def __init__(
        self,
        actor_rules: list[AMLRule] | None = None,
        guest_rules: list[AMLRule] | None = None,
        common_rules: list[AMLRule] | None = None,
    ) -> None:
        self._actor_rules = list(actor_rules if actor_rules is not None else ACTOR_RULES)
        self._guest_rules = list(guest_rules if guest_rules is not None else GUEST_RULES)
        self._common_rules = list(common_rules if common_rules is not None else COMMON_RULES)
        logger.info(
            "aml_rules_engine_initialized",
            actor_rules=len(self._actor_rules),
            guest_rules=len(self._guest_rules),
            common_rules=len(self._common_rules),
        )

    def rules_for(self, ctx: EvaluationContext) -> list[AMLRule]:
        payment = ctx.payment
        if payment.user_id is not None:
            branch = self._actor_rules
        elif payment.donor_phone or payment.donor_email:
            branch = self._guest_rules
        else:
            branch = []
        return [*branch, *self._common_rules]

    async def evaluate(self, ctx: EvaluationContext) -> tuple[Verdict, list[RuleResult]]:
        """Evaluate a payment against the applicable rules. Returns verdict and results."""
        results: list[RuleResult] = []

        for rule in self.rules_for(ctx):
            try:
                result = await rule.evaluate(ctx)
            except Exception:
                logger.exception(
                    "rule_evaluation_error",
                    rule_id=rule.rule_id.value,
                    payment_id=ctx.payment.payment_id,
                )
                result = RuleResult(
                    rule_name=rule.rule_id.value,
                    triggered=False,
                    details="Rule evaluation failed",
                    branch=rule.branch,
                )
            results.append(result)

        triggered = [r for r in results if r.triggered and r.indicator is not None]
        # One code per rule; dict.fromkeys keeps evaluation order
        indicators = list(dict.fromkeys(r.indicator for r in triggered))
        raw_score = sum(r.score for r in triggered)
        score = max(0, min(raw_score, MAX_SCORE))
        verdict = Verdict(risk_score=score, indicators=indicators, status=classify_status(score))

        logger.info(
            "aml_rules_evaluated",
            payment_id=ctx.payment.payment_id,
            guest=ctx.payment.is_guest,
            risk_score=score,
            raw_score=raw_score,
            status=verdict.status.value,
            indicators=[i.value for i in indicators],
            failed_rules=[r.rule_name for r in results if r.details == "Rule evaluation failed"],
        )

        return verdict, results
