"""Pydantic models for the AML domain."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

# Fixed status thresholds. Alerts are raised at the review line.
REVIEW_THRESHOLD = 60
BLOCK_THRESHOLD = 80
MAX_SCORE = 100


class Indicator(StrEnum):
    # Actor branch
    HIGH_AMOUNT_VS_USER_AVG = "high_amount_vs_user_avg"
    NEW_ACCOUNT_HIGH_VALUE = "new_account_high_value"
    STRUCTURING_MANY_SMALL_TXNS = "structuring_many_small_txns"
    # Guest branch
    GUEST_HIGH_AMOUNT_VS_PHONE_AVG = "guest_high_amount_vs_phone_avg"
    GUEST_EXCESSIVE_DONATIONS_1H = "guest_excessive_donations_1h"
    GUEST_EXCESSIVE_SAME_CAMPAIGN_DONATIONS = "guest_excessive_same_campaign_donations"
    GUEST_LOW_CAMPAIGN_DIVERSITY = "guest_low_campaign_diversity"
    GUEST_HIGH_VELOCITY_DONATIONS = "guest_high_velocity_donations"
    GUEST_STRUCTURING_SMALL_AMOUNTS = "guest_structuring_small_amounts"
    GUEST_HIGH_AMOUNT_VS_EMAIL_AVG = "guest_high_amount_vs_email_avg"
    GUEST_EXCESSIVE_DONATIONS_EMAIL_1H = "guest_excessive_donations_email_1h"
    # Cross-cutting
    SELF_DONATION_DETECTED = "self_donation_detected"
    SHARED_IP_NETWORK = "shared_ip_network"
    UNKNOWN_PAYMENT_METHOD = "unknown_payment_method"
    HIGH_RISK_COUNTRY = "high_risk_country"
    VPN_OR_TOR = "vpn_or_tor"
    REFUND_FLAG = "refund_flag"


class AMLStatus(StrEnum):
    OK = "ok"
    PENDING_REVIEW = "pending_review"
    BLOCKED = "blocked"


class AlertOutcome(StrEnum):
    REPORTED = "reported"
    DISMISSED = "dismissed"
    UNDER_REVIEW = "under_review"
    NONE = "none"


class ReportType(StrEnum):
    STR = "STR"  # suspicious transaction report
    TTR = "TTR"  # threshold transaction report
    NONE = "none"


def classify_status(score: int) -> AMLStatus:
    if score >= BLOCK_THRESHOLD:
        return AMLStatus.BLOCKED
    if score >= REVIEW_THRESHOLD:
        return AMLStatus.PENDING_REVIEW
    return AMLStatus.OK


class PaymentSnapshot(BaseModel):
    """The subset of a payment record the engine reads."""

    payment_id: str
    amount: int = Field(gt=0)
    campaign_id: str
    user_id: str | None = None
    donation_id: str | None = None
    donor_phone: str | None = None
    donor_email: str | None = None
    ip: str | None = None
    country: str | None = None
    country_code: str | None = None
    is_vpn_detected: bool | None = None
    payment_method: str | None = None
    status: str | None = None
    refunded: bool = False
    created_at: datetime | None = None

    @property
    def is_guest(self) -> bool:
        return self.user_id is None


class ActorSnapshot(BaseModel):
    user_id: str
    created_at: datetime | None = None
    country: str | None = None


class CampaignCreator(BaseModel):
    user_id: str
    email: str | None = None
    phone: str | None = None


class RuleResult(BaseModel):
    rule_name: str
    triggered: bool
    score: int = 0
    indicator: Indicator | None = None
    details: str = ""
    evidence: dict = Field(default_factory=dict)
    branch: str = ""


class Verdict(BaseModel):
    risk_score: int = Field(ge=0, le=MAX_SCORE)
    indicators: list[Indicator] = []
    status: AMLStatus = AMLStatus.OK


class AlertMetadata(BaseModel):
    """Snapshot of the payment taken when the alert is raised."""

    ip: str | None = None
    country: str | None = None
    country_code: str | None = None
    amount: int
    payment_method: str | None = None
    donor_phone: str | None = None
    donor_email: str | None = None
    is_vpn_detected: bool = False
    campaign_id: str | None = None
    is_self_donation: bool = False


class AlertRecord(BaseModel):
    alert_id: str
    user_id: str | None = None
    payment_id: str
    donation_id: str | None = None
    risk_score: int = Field(ge=0, le=MAX_SCORE)
    indicators: list[Indicator] = []
    created_at: datetime
    reviewed: bool = False
    outcome: AlertOutcome = AlertOutcome.NONE
    report_type: ReportType = ReportType.NONE
    metadata: AlertMetadata


class AnalysisResult(BaseModel):
    payment_id: str
    verdict: Verdict
    alert_id: str | None = None
    rule_results: list[RuleResult] = []
    analyzed_at: datetime
