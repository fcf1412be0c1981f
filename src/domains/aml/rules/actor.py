"""Rules for payments made by a registered user."""

from datetime import UTC

from ..context import EvaluationContext
from ..counters import counter_key
from ..models import Indicator, RuleResult
from .base import AMLRule


class HighAmountVsUserAverageRule(AMLRule):
    """Triggers when the amount exceeds a multiple of the user's average donation."""

    rule_id = Indicator.HIGH_AMOUNT_VS_USER_AVG
    branch = "actor"
    score_delta = 30

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        cfg = ctx.config.actor
        avg = await ctx.repository.average_amount(
            user_id=ctx.user_id, exclude_payment_id=ctx.payment.payment_id
        )
        if avg is None:
            avg = cfg.default_average_amount

        limit = cfg.high_amount_multiplier * avg
        if ctx.payment.amount <= limit:
            return self._not_triggered()

        return self._triggered(
            details=f"Amount {ctx.payment.amount} exceeds {cfg.high_amount_multiplier:g}x "
            f"user average {avg:,.2f}",
            evidence={"amount": ctx.payment.amount, "average": avg, "limit": limit},
        )


class NewAccountHighValueRule(AMLRule):
    """Triggers for large donations from accounts younger than the age window."""

    rule_id = Indicator.NEW_ACCOUNT_HIGH_VALUE
    branch = "actor"
    score_delta = 35

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        cfg = ctx.config.actor
        if ctx.actor is None or ctx.actor.created_at is None:
            return self._not_triggered()

        created_at = ctx.actor.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        age_hours = (ctx.now - created_at).total_seconds() / 3600
        if age_hours >= cfg.new_account_hours or ctx.payment.amount <= cfg.new_account_high_value:
            return self._not_triggered()

        return self._triggered(
            details=f"Account {age_hours:.1f}h old donating {ctx.payment.amount}",
            evidence={
                "account_age_hours": round(age_hours, 2),
                "amount": ctx.payment.amount,
                "threshold": cfg.new_account_high_value,
            },
        )


class StructuringManySmallTxnsRule(AMLRule):
    """Triggers when a user makes many small donations within one window."""

    rule_id = Indicator.STRUCTURING_MANY_SMALL_TXNS
    branch = "actor"
    score_delta = 40

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        cfg = ctx.config.actor
        key = counter_key("txncount", "uid", ctx.user_id)
        count = await ctx.tumbling_count(key, cfg.structuring_window_seconds)

        if count <= cfg.structuring_count or ctx.payment.amount >= cfg.structuring_amount_bound:
            return self._not_triggered()

        return self._triggered(
            details=f"{count} donations this window, current amount {ctx.payment.amount}",
            evidence={
                "count": count,
                "threshold": cfg.structuring_count,
                "amount_bound": cfg.structuring_amount_bound,
                "window_seconds": cfg.structuring_window_seconds,
            },
        )
