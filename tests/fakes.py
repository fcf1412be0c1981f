"""In-memory collaborators for AML tests."""

from datetime import datetime

from src.domains.aml.models import (
    ActorSnapshot,
    AlertRecord,
    CampaignCreator,
    PaymentSnapshot,
    Verdict,
)
from src.domains.aml.repository import COMPLETED_STATUS, AlertAlreadyExistsError, AMLRepository


class FakeClock:
    """Monotonic seconds that only move when a test says so."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryAMLRepository(AMLRepository):
    def __init__(self) -> None:
        self.payments: dict[str, PaymentSnapshot] = {}
        self.actors: dict[str, ActorSnapshot] = {}
        self.creators: dict[str, CampaignCreator] = {}
        self.verdicts: dict[str, tuple[Verdict, datetime]] = {}
        self.verdict_writes = 0
        self.alerts: dict[str, AlertRecord] = {}
        self.fail_verdict_write = False
        self.fail_alert_insert = False
        # Simulates a concurrent writer that inserts between the check and the insert
        self.hide_existing_alerts = False

    def add_payment(self, payment: PaymentSnapshot) -> PaymentSnapshot:
        self.payments[payment.payment_id] = payment
        return payment

    def add_actor(self, actor: ActorSnapshot) -> ActorSnapshot:
        self.actors[actor.user_id] = actor
        return actor

    def add_campaign(self, campaign_id: str, creator: CampaignCreator) -> None:
        self.creators[campaign_id] = creator

    async def get_payment(self, payment_id: str) -> PaymentSnapshot | None:
        return self.payments.get(payment_id)

    async def get_actor(self, user_id: str) -> ActorSnapshot | None:
        return self.actors.get(user_id)

    def _history(self, exclude_payment_id: str | None) -> list[PaymentSnapshot]:
        return [
            p
            for p in self.payments.values()
            if p.status == COMPLETED_STATUS and p.payment_id != exclude_payment_id
        ]

    async def average_amount(
        self,
        *,
        user_id: str | None = None,
        donor_phone: str | None = None,
        donor_email: str | None = None,
        exclude_payment_id: str | None = None,
    ) -> float | None:
        history = self._history(exclude_payment_id)
        if user_id is not None:
            amounts = [p.amount for p in history if p.user_id == user_id]
        elif donor_phone is not None:
            amounts = [p.amount for p in history if p.is_guest and p.donor_phone == donor_phone]
        elif donor_email is not None:
            amounts = [p.amount for p in history if p.is_guest and p.donor_email == donor_email]
        else:
            raise ValueError("average_amount needs a user_id, donor_phone or donor_email")
        if not amounts:
            return None
        return sum(amounts) / len(amounts)

    async def guest_campaigns_since(self, donor_phone: str, since: datetime) -> set[str]:
        return {
            p.campaign_id
            for p in self._history(None)
            if p.is_guest
            and p.donor_phone == donor_phone
            and p.created_at is not None
            and p.created_at >= since
        }

    async def get_campaign_creator(self, campaign_id: str) -> CampaignCreator | None:
        return self.creators.get(campaign_id)

    async def write_verdict(self, payment_id: str, verdict: Verdict, analyzed_at: datetime) -> None:
        if self.fail_verdict_write:
            raise ConnectionError("database unavailable")
        self.verdict_writes += 1
        self.verdicts[payment_id] = (verdict, analyzed_at)

    async def find_alert_id(self, payment_id: str) -> str | None:
        if self.hide_existing_alerts:
            return None
        alert = self.alerts.get(payment_id)
        return alert.alert_id if alert else None

    async def insert_alert(self, alert: AlertRecord) -> str:
        if self.fail_alert_insert:
            raise ConnectionError("database unavailable")
        existing = self.alerts.get(alert.payment_id)
        if existing is not None:
            raise AlertAlreadyExistsError(alert.payment_id, existing.alert_id)
        self.alerts[alert.payment_id] = alert
        return alert.alert_id


class FailingCounterStore:
    """Counter store whose every call raises; wraps nothing."""

    def __init__(self) -> None:
        self.calls = 0

    async def increment_with_window(self, key: str, window_seconds: int) -> int:
        self.calls += 1
        raise ConnectionError("redis unavailable")

    async def add_to_set(self, key: str, member: str, window_seconds: int) -> int:
        self.calls += 1
        raise ConnectionError("redis unavailable")
