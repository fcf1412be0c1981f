"""Rules evaluated for every payment, guest or registered."""

import re

from ..config import PhoneNormalization
from ..context import EvaluationContext
from ..counters import counter_key
from ..models import Indicator, RuleResult
from .base import AMLRule

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None, settings: PhoneNormalization | None = None) -> str:
    """Reduce a phone number to its national digits.

    Non-digits are stripped, then an international prefix (``00`` or the
    configured country calling code) is dropped when what remains is longer
    than a national number.
    """
    if not raw:
        return ""
    settings = settings or PhoneNormalization()
    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith("00"):
        digits = digits[2:]
    code = settings.country_calling_code
    if code and digits.startswith(code) and len(digits) > settings.national_number_length:
        digits = digits[len(code) :]
    return digits


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def guest_identity(phone: str | None, email: str | None) -> str:
    return f"guest:{phone or email or 'unknown'}"


class SelfDonationRule(AMLRule):
    """Triggers when the donor is the creator of the campaign they donate to."""

    rule_id = Indicator.SELF_DONATION_DETECTED
    branch = "common"
    score_delta = 70

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        creator = await ctx.repository.get_campaign_creator(ctx.payment.campaign_id)
        if creator is None:
            return self._not_triggered()

        matched_on: list[str] = []
        if ctx.user_id is not None and creator.user_id == ctx.user_id:
            matched_on.append("user_id")

        donor_email = normalize_email(ctx.payment.donor_email)
        if donor_email and donor_email == normalize_email(creator.email):
            matched_on.append("email")

        donor_phone = normalize_phone(ctx.payment.donor_phone, ctx.config.phone)
        if donor_phone and donor_phone == normalize_phone(creator.phone, ctx.config.phone):
            matched_on.append("phone")

        if not matched_on:
            return self._not_triggered()

        ctx.is_self_donation = True
        return self._triggered(
            details=f"Donor matches campaign creator on {', '.join(matched_on)}",
            evidence={"creator_id": creator.user_id, "matched_on": matched_on},
        )


class SharedIPNetworkRule(AMLRule):
    """Triggers when several distinct donors use the same IP within a day."""

    rule_id = Indicator.SHARED_IP_NETWORK
    branch = "common"
    score_delta = 40

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        ip = ctx.payment.ip
        if not ip:
            return self._not_triggered()

        cfg = ctx.config.network
        member = ctx.user_id or guest_identity(ctx.payment.donor_phone, ctx.payment.donor_email)
        members = await ctx.counters.add_to_set(
            counter_key("ip", ip), member, cfg.shared_ip_window_seconds
        )
        if members < cfg.shared_ip_threshold:
            return self._not_triggered()

        return self._triggered(
            details=f"{members} distinct donors from {ip} in 24h",
            evidence={"ip": ip, "distinct_donors": members, "threshold": cfg.shared_ip_threshold},
        )


class UnknownPaymentMethodRule(AMLRule):
    """Triggers for any payment channel outside the trusted local wallets."""

    rule_id = Indicator.UNKNOWN_PAYMENT_METHOD
    branch = "common"
    score_delta = 10

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        method = (ctx.payment.payment_method or "").lower()
        if method in ctx.config.network.known_payment_methods:
            return self._not_triggered()

        return self._triggered(
            details=f"Payment method '{method or 'none'}' is not a known channel",
            evidence={"payment_method": method or None},
        )


class HighRiskCountryRule(AMLRule):
    rule_id = Indicator.HIGH_RISK_COUNTRY
    branch = "common"
    score_delta = 40

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        country = ctx.payment.country_code or (ctx.actor.country if ctx.actor else None)
        if not country or country.upper() not in ctx.config.network.high_risk_countries:
            return self._not_triggered()

        return self._triggered(
            details=f"Payment associated with high-risk jurisdiction {country.upper()}",
            evidence={"country_code": country.upper()},
        )


class VPNOrTorRule(AMLRule):
    rule_id = Indicator.VPN_OR_TOR
    branch = "common"
    score_delta = 30

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        if not ctx.payment.is_vpn_detected:
            return self._not_triggered()

        return self._triggered(
            details="Payment made through a VPN or proxy",
            evidence={"ip": ctx.payment.ip},
        )


class RefundFlagRule(AMLRule):
    rule_id = Indicator.REFUND_FLAG
    branch = "common"
    score_delta = 20

    async def evaluate(self, ctx: EvaluationContext) -> RuleResult:
        if not (ctx.payment.refunded or ctx.payment.status == "Refunded"):
            return self._not_triggered()

        return self._triggered(
            details="Payment has been refunded",
            evidence={"refunded": ctx.payment.refunded, "status": ctx.payment.status},
        )
