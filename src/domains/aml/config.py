"""AML rule configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


@dataclass
class ActorThresholds:
    high_amount_multiplier: float = 10.0
    default_average_amount: float = 500.0
    new_account_hours: int = 24
    new_account_high_value: int = 5_000
    structuring_count: int = 5
    structuring_amount_bound: int = 500
    structuring_window_seconds: int = 3_600


@dataclass
class GuestThresholds:
    high_amount_multiplier: float = 10.0
    default_average_amount: float = 500.0
    window_seconds: int = 3_600
    phone_count_1h_max: int = 15
    same_campaign_count_1h_max: int = 8
    low_diversity_trigger_count: int = 10
    low_diversity_min_campaigns: int = 2
    velocity_window_seconds: int = 300
    velocity_count_max: int = 3
    structuring_count: int = 5
    structuring_amount_bound: int = 500
    email_count_1h_max: int = 15


@dataclass
class NetworkThresholds:
    shared_ip_threshold: int = 3
    shared_ip_window_seconds: int = 24 * 3_600
    known_payment_methods: tuple[str, ...] = ("khalti", "esewa")
    high_risk_countries: tuple[str, ...] = (
        "IR",  # Iran
        "KP",  # North Korea
        "SY",  # Syria
        "CU",  # Cuba
        "SD",  # Sudan
        "AF",  # Afghanistan
        "MM",  # Myanmar
        "ZW",  # Zimbabwe
        "IQ",  # Iraq
    )


@dataclass
class PhoneNormalization:
    country_calling_code: str = "977"
    national_number_length: int = 10


@dataclass
class AMLConfig:
    actor: ActorThresholds = field(default_factory=ActorThresholds)
    guest: GuestThresholds = field(default_factory=GuestThresholds)
    network: NetworkThresholds = field(default_factory=NetworkThresholds)
    phone: PhoneNormalization = field(default_factory=PhoneNormalization)

    @classmethod
    def from_env(cls) -> "AMLConfig":
        """Load config with env var overrides. Env vars use AML_ prefix."""
        config = cls()

        # Actor overrides
        if v := os.getenv("AML_NEW_ACCOUNT_HIGH_VALUE"):
            config.actor.new_account_high_value = int(v)
        if v := os.getenv("AML_STRUCTURING_COUNT"):
            config.actor.structuring_count = int(v)
            config.guest.structuring_count = int(v)
        if v := os.getenv("AML_STRUCTURING_AMOUNT_BOUND"):
            config.actor.structuring_amount_bound = int(v)
            config.guest.structuring_amount_bound = int(v)

        # Guest overrides
        if v := os.getenv("AML_GUEST_PHONE_COUNT_1H_MAX"):
            config.guest.phone_count_1h_max = int(v)
        if v := os.getenv("AML_GUEST_EMAIL_COUNT_1H_MAX"):
            config.guest.email_count_1h_max = int(v)

        # Network overrides
        if v := os.getenv("AML_SHARED_IP_THRESHOLD"):
            config.network.shared_ip_threshold = int(v)
        if v := os.getenv("AML_KNOWN_PAYMENT_METHODS"):
            config.network.known_payment_methods = tuple(
                m.strip().lower() for m in v.split(",") if m.strip()
            )
        if v := os.getenv("AML_HIGH_RISK_COUNTRIES"):
            config.network.high_risk_countries = tuple(
                c.strip().upper() for c in v.split(",") if c.strip()
            )

        if v := os.getenv("AML_PHONE_COUNTRY_CODE"):
            config.phone.country_calling_code = v

        return config


# Module-level default instance
default_config = AMLConfig()
