"""AML risk rules package.

Exports the three rule groups in evaluation order and individual rule classes
for direct use. ACTOR_RULES and GUEST_RULES are mutually exclusive branches;
COMMON_RULES run for every payment.
"""

from .actor import (
    HighAmountVsUserAverageRule,
    NewAccountHighValueRule,
    StructuringManySmallTxnsRule,
)
from .base import AMLRule
from .common import (
    HighRiskCountryRule,
    RefundFlagRule,
    SelfDonationRule,
    SharedIPNetworkRule,
    UnknownPaymentMethodRule,
    VPNOrTorRule,
    guest_identity,
    normalize_email,
    normalize_phone,
)
from .guest import (
    GuestExcessiveDonationsRule,
    GuestExcessiveEmailDonationsRule,
    GuestExcessiveSameCampaignRule,
    GuestHighAmountVsEmailAverageRule,
    GuestHighAmountVsPhoneAverageRule,
    GuestHighVelocityRule,
    GuestLowCampaignDiversityRule,
    GuestStructuringSmallAmountsRule,
)

ACTOR_RULES: list[AMLRule] = [
    HighAmountVsUserAverageRule(),
    NewAccountHighValueRule(),
    StructuringManySmallTxnsRule(),
]

GUEST_RULES: list[AMLRule] = [
    # Phone
    GuestHighAmountVsPhoneAverageRule(),
    GuestExcessiveDonationsRule(),
    GuestExcessiveSameCampaignRule(),
    GuestLowCampaignDiversityRule(),
    GuestHighVelocityRule(),
    GuestStructuringSmallAmountsRule(),
    # Email
    GuestHighAmountVsEmailAverageRule(),
    GuestExcessiveEmailDonationsRule(),
]

COMMON_RULES: list[AMLRule] = [
    SelfDonationRule(),
    SharedIPNetworkRule(),
    UnknownPaymentMethodRule(),
    HighRiskCountryRule(),
    VPNOrTorRule(),
    RefundFlagRule(),
]

__all__ = [
    "ACTOR_RULES",
    "AMLRule",
    "COMMON_RULES",
    "GUEST_RULES",
    "guest_identity",
    "normalize_email",
    "normalize_phone",
    # Actor
    "HighAmountVsUserAverageRule",
    "NewAccountHighValueRule",
    "StructuringManySmallTxnsRule",
    # Guest
    "GuestHighAmountVsPhoneAverageRule",
    "GuestExcessiveDonationsRule",
    "GuestExcessiveSameCampaignRule",
    "GuestLowCampaignDiversityRule",
    "GuestHighVelocityRule",
    "GuestStructuringSmallAmountsRule",
    "GuestHighAmountVsEmailAverageRule",
    "GuestExcessiveEmailDonationsRule",
    # Common
    "SelfDonationRule",
    "SharedIPNetworkRule",
    "UnknownPaymentMethodRule",
    "HighRiskCountryRule",
    "VPNOrTorRule",
    "RefundFlagRule",
]
