"""Rules for guest payments, keyed on the donor's contact phone or email."""

from datetime import timedelta

from ..context import EvaluationContext
from ..counters import counter_key
from ..models import Indicator, RuleResult
from .base import AMLRule


def phone_hour_key(phone: str) -> str:
    return counter_key("txncount", "phone", phone)


async def phone_hour_count(ctx: EvaluationContext) -> int:
    """The 1h phone counter, shared by several guest rules within one pass."""
    return await ctx.tumbling_count(
        phone_hour_key(ctx.payment.donor_phone), ctx.config.guest.window_seconds
    )


class GuestHighAmountVsPhoneAverageRule(AMLRule):
    """Triggers when the amount exceeds a multiple of the phone's average donation."""

    rule_id = Indicator.GUEST_HIGH_AMOUNT_VS_PHONE_AVG
    branch = "guest"
    score_delta = 25

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        phone = ctx.payment.donor_phone
        if not phone:
            return self._not_triggered()

        cfg = ctx.config.guest
        avg = await ctx.repository.average_amount(
            donor_phone=phone, exclude_payment_id=ctx.payment.payment_id
        )
        if avg is None:
            avg = cfg.default_average_amount

        limit = cfg.high_amount_multiplier * avg
        if ctx.payment.amount <= limit:
            return self._not_triggered()

        return self._triggered(
            details=f"Guest amount {ctx.payment.amount} exceeds {cfg.high_amount_multiplier:g}x "
            f"phone average {avg:,.2f}",
            evidence={"amount": ctx.payment.amount, "average": avg, "limit": limit},
        )


class GuestExcessiveDonationsRule(AMLRule):
    """Triggers when one phone donates too often within the hour window."""

    rule_id = Indicator.GUEST_EXCESSIVE_DONATIONS_1H
    branch = "guest"
    score_delta = 45

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        if not ctx.payment.donor_phone:
            return self._not_triggered()

        threshold = ctx.config.guest.phone_count_1h_max
        count = await phone_hour_count(ctx)
        if count <= threshold:
            return self._not_triggered()

        return self._triggered(
            details=f"{count} guest donations from this phone in 1h (threshold: {threshold})",
            evidence={"count": count, "threshold": threshold, "window": "1h"},
        )


class GuestExcessiveSameCampaignRule(AMLRule):
    """Triggers when one phone donates to the same campaign too often."""

    rule_id = Indicator.GUEST_EXCESSIVE_SAME_CAMPAIGN_DONATIONS
    branch = "guest"
    score_delta = 50

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        phone = ctx.payment.donor_phone
        if not phone:
            return self._not_triggered()

        cfg = ctx.config.guest
        key = counter_key("txncount", "phone", phone, "campaign", ctx.payment.campaign_id)
        count = await ctx.tumbling_count(key, cfg.window_seconds)
        if count <= cfg.same_campaign_count_1h_max:
            return self._not_triggered()

        return self._triggered(
            details=f"{count} guest donations to campaign {ctx.payment.campaign_id} in 1h",
            evidence={
                "count": count,
                "threshold": cfg.same_campaign_count_1h_max,
                "campaign_id": ctx.payment.campaign_id,
            },
        )


class GuestLowCampaignDiversityRule(AMLRule):
    """Triggers when a busy phone keeps donating to fewer than two campaigns.

    Needs the actual set of campaigns, so it queries payment history once the
    hourly counter has passed the trigger count.
    """

    rule_id = Indicator.GUEST_LOW_CAMPAIGN_DIVERSITY
    branch = "guest"
    score_delta = 30

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        phone = ctx.payment.donor_phone
        if not phone:
            return self._not_triggered()

        cfg = ctx.config.guest
        count = await phone_hour_count(ctx)
        if count <= cfg.low_diversity_trigger_count:
            return self._not_triggered()

        since = ctx.now - timedelta(seconds=cfg.window_seconds)
        campaigns = await ctx.repository.guest_campaigns_since(phone, since)
        if len(campaigns) >= cfg.low_diversity_min_campaigns:
            return self._not_triggered()

        return self._triggered(
            details=f"{count} donations in 1h spread over {len(campaigns)} campaign(s)",
            evidence={
                "count": count,
                "distinct_campaigns": sorted(campaigns),
                "min_campaigns": cfg.low_diversity_min_campaigns,
            },
        )


class GuestHighVelocityRule(AMLRule):
    """Triggers on bursts of guest donations within a few minutes."""

    rule_id = Indicator.GUEST_HIGH_VELOCITY_DONATIONS
    branch = "guest"
    score_delta = 35

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        phone = ctx.payment.donor_phone
        if not phone:
            return self._not_triggered()

        cfg = ctx.config.guest
        key = counter_key("velocity", "phone", phone)
        count = await ctx.tumbling_count(key, cfg.velocity_window_seconds)
        if count <= cfg.velocity_count_max:
            return self._not_triggered()

        minutes = cfg.velocity_window_seconds // 60
        return self._triggered(
            details=f"{count} guest donations from this phone in {minutes}min",
            evidence={
                "count": count,
                "threshold": cfg.velocity_count_max,
                "window_seconds": cfg.velocity_window_seconds,
            },
        )


class GuestStructuringSmallAmountsRule(AMLRule):
    """Triggers when a phone makes many small donations within the hour window."""

    rule_id = Indicator.GUEST_STRUCTURING_SMALL_AMOUNTS
    branch = "guest"
    score_delta = 40

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        if not ctx.payment.donor_phone:
            return self._not_triggered()

        cfg = ctx.config.guest
        count = await phone_hour_count(ctx)
        if count <= cfg.structuring_count or ctx.payment.amount >= cfg.structuring_amount_bound:
            return self._not_triggered()

        return self._triggered(
            details=f"{count} guest donations in 1h, current amount {ctx.payment.amount}",
            evidence={
                "count": count,
                "threshold": cfg.structuring_count,
                "amount_bound": cfg.structuring_amount_bound,
            },
        )


class GuestHighAmountVsEmailAverageRule(AMLRule):
    """Triggers when the amount exceeds a multiple of the email's average donation."""

    rule_id = Indicator.GUEST_HIGH_AMOUNT_VS_EMAIL_AVG
    branch = "guest"
    score_delta = 20

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        email = ctx.payment.donor_email
        if not email:
            return self._not_triggered()

        cfg = ctx.config.guest
        avg = await ctx.repository.average_amount(
            donor_email=email, exclude_payment_id=ctx.payment.payment_id
        )
        if avg is None:
            avg = cfg.default_average_amount

        limit = cfg.high_amount_multiplier * avg
        if ctx.payment.amount <= limit:
            return self._not_triggered()

        return self._triggered(
            details=f"Guest amount {ctx.payment.amount} exceeds {cfg.high_amount_multiplier:g}x "
            f"email average {avg:,.2f}",
            evidence={"amount": ctx.payment.amount, "average": avg, "limit": limit},
        )


class GuestExcessiveEmailDonationsRule(AMLRule):
    """Triggers when one email donates too often within the hour window."""

    rule_id = Indicator.GUEST_EXCESSIVE_DONATIONS_EMAIL_1H
    branch = "guest"
    score_delta = 40

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        email = ctx.payment.donor_email
        if not email:
            return self._not_triggered()

        cfg = ctx.config.guest
        key = counter_key("txncount", "email", email)
        count = await ctx.tumbling_count(key, cfg.window_seconds)
        if count <= cfg.email_count_1h_max:
            return self._not_triggered()

        return self._triggered(
            details=f"{count} guest donations from this email in 1h "
            f"(threshold: {cfg.email_count_1h_max})",
            evidence={"count": count, "threshold": cfg.email_count_1h_max, "window": "1h"},
        )
