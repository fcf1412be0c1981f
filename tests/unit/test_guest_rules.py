"""Unit tests for the guest AML rules."""

from datetime import timedelta

import pytest

from src.domains.aml.counters import InMemoryCounterStore, counter_key
from src.domains.aml.rules.guest import (
    GuestExcessiveDonationsRule,
    GuestExcessiveEmailDonationsRule,
    GuestExcessiveSameCampaignRule,
    GuestHighAmountVsEmailAverageRule,
    GuestHighAmountVsPhoneAverageRule,
    GuestHighVelocityRule,
    GuestLowCampaignDiversityRule,
    GuestStructuringSmallAmountsRule,
    phone_hour_key,
)
from tests.conftest import NOW, make_context, make_payment
from tests.fakes import FakeClock, InMemoryAMLRepository

PHONE = "9800000001"
EMAIL = "guest@example.com"


async def _bump(store: InMemoryCounterStore, key: str, times: int, window: int = 3600) -> None:
    for _ in range(times):
        await store.increment_with_window(key, window)


def _guest_payment(**kwargs):
    defaults = {"donor_phone": PHONE, "amount": 100}
    defaults.update(kwargs)
    return make_payment(**defaults)


@pytest.fixture
def store():
    return InMemoryCounterStore(clock=FakeClock())


class TestGuestHighAmountVsPhoneAverage:
    rule = GuestHighAmountVsPhoneAverageRule()

    @pytest.mark.asyncio
    async def test_default_average(self):
        ctx = make_context(_guest_payment(amount=5_001))
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.score == 25

    @pytest.mark.asyncio
    async def test_phone_history_ignores_registered_payments(self):
        repo = InMemoryAMLRepository()
        repo.add_payment(make_payment(payment_id="g-1", donor_phone=PHONE, amount=50))
        # Registered payment with the same phone is not guest history
        repo.add_payment(
            make_payment(payment_id="u-1", user_id="user-1", donor_phone=PHONE, amount=9_000)
        )
        ctx = make_context(_guest_payment(amount=600), repository=repo)
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.evidence["average"] == 50

    @pytest.mark.asyncio
    async def test_no_phone(self):
        ctx = make_context(make_payment(donor_email=EMAIL, amount=50_000))
        assert not (await self.rule.evaluate(ctx)).triggered


class TestGuestExcessiveDonations:
    rule = GuestExcessiveDonationsRule()

    @pytest.mark.asyncio
    async def test_fifteenth_does_not_trigger(self, store):
        await _bump(store, phone_hour_key(PHONE), 14)
        ctx = make_context(_guest_payment(), counters=store)
        assert not (await self.rule.evaluate(ctx)).triggered

    @pytest.mark.asyncio
    async def test_sixteenth_triggers(self, store):
        await _bump(store, phone_hour_key(PHONE), 15)
        ctx = make_context(_guest_payment(), counters=store)
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.score == 45
        assert result.evidence["count"] == 16


class TestGuestExcessiveSameCampaign:
    rule = GuestExcessiveSameCampaignRule()

    @pytest.mark.asyncio
    async def test_ninth_to_same_campaign_triggers(self, store):
        await _bump(store, counter_key("txncount", "phone", PHONE, "campaign", "camp-1"), 8)
        ctx = make_context(_guest_payment(campaign_id="camp-1"), counters=store)
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.score == 50

    @pytest.mark.asyncio
    async def test_other_campaign_counted_separately(self, store):
        await _bump(store, counter_key("txncount", "phone", PHONE, "campaign", "camp-1"), 8)
        ctx = make_context(_guest_payment(campaign_id="camp-2"), counters=store)
        assert not (await self.rule.evaluate(ctx)).triggered


class TestGuestLowCampaignDiversity:
    rule = GuestLowCampaignDiversityRule()

    @staticmethod
    def _history(campaigns: list[str]) -> InMemoryAMLRepository:
        repo = InMemoryAMLRepository()
        for i, campaign_id in enumerate(campaigns):
            repo.add_payment(
                make_payment(
                    payment_id=f"h-{i}",
                    donor_phone=PHONE,
                    campaign_id=campaign_id,
                    created_at=NOW - timedelta(minutes=10),
                )
            )
        return repo

    @pytest.mark.asyncio
    async def test_single_campaign_triggers(self, store):
        await _bump(store, phone_hour_key(PHONE), 10)
        repo = self._history(["camp-1"] * 10)
        ctx = make_context(_guest_payment(), repository=repo, counters=store)
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.score == 30
        assert result.evidence["distinct_campaigns"] == ["camp-1"]

    @pytest.mark.asyncio
    async def test_two_campaigns_is_diverse(self, store):
        await _bump(store, phone_hour_key(PHONE), 10)
        repo = self._history(["camp-1", "camp-2"] * 5)
        ctx = make_context(_guest_payment(), repository=repo, counters=store)
        assert not (await self.rule.evaluate(ctx)).triggered

    @pytest.mark.asyncio
    async def test_below_trigger_count(self, store):
        await _bump(store, phone_hour_key(PHONE), 9)
        ctx = make_context(_guest_payment(), counters=store)
        assert not (await self.rule.evaluate(ctx)).triggered

    @pytest.mark.asyncio
    async def test_history_outside_window_ignored(self, store):
        await _bump(store, phone_hour_key(PHONE), 10)
        repo = InMemoryAMLRepository()
        repo.add_payment(
            make_payment(
                payment_id="old",
                donor_phone=PHONE,
                campaign_id="camp-9",
                created_at=NOW - timedelta(hours=2),
            )
        )
        repo.add_payment(
            make_payment(
                payment_id="recent",
                donor_phone=PHONE,
                campaign_id="camp-1",
                created_at=NOW - timedelta(minutes=5),
            )
        )
        ctx = make_context(_guest_payment(), repository=repo, counters=store)
        assert (await self.rule.evaluate(ctx)).triggered


class TestGuestHighVelocity:
    rule = GuestHighVelocityRule()

    @pytest.mark.asyncio
    async def test_fourth_in_five_minutes_triggers(self, store):
        await _bump(store, counter_key("velocity", "phone", PHONE), 3, window=300)
        ctx = make_context(_guest_payment(), counters=store)
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.score == 35
        assert "5min" in result.details

    @pytest.mark.asyncio
    async def test_burst_window_expires(self):
        clock = FakeClock()
        store = InMemoryCounterStore(clock=clock)
        await _bump(store, counter_key("velocity", "phone", PHONE), 3, window=300)
        clock.advance(301)
        ctx = make_context(_guest_payment(), counters=store)
        assert not (await self.rule.evaluate(ctx)).triggered


class TestGuestStructuringSmallAmounts:
    rule = GuestStructuringSmallAmountsRule()

    @pytest.mark.asyncio
    async def test_sixth_small_donation_triggers(self, store):
        await _bump(store, phone_hour_key(PHONE), 5)
        ctx = make_context(_guest_payment(amount=499), counters=store)
        result = await self.rule.evaluate(ctx)
        assert result.triggered
        assert result.score == 40

    @pytest.mark.asyncio
    async def test_bound_is_exclusive(self, store):
        await _bump(store, phone_hour_key(PHONE), 5)
        ctx = make_context(_guest_payment(amount=500), counters=store)
        assert not (await self.rule.evaluate(ctx)).triggered


class TestGuestEmailRules:
    @pytest.mark.asyncio
    async def test_high_amount_vs_email_average(self):
        repo = InMemoryAMLRepository()
        repo.add_payment(make_payment(payment_id="g-1", donor_email=EMAIL, amount=100))
        ctx = make_context(make_payment(donor_email=EMAIL, amount=1_001), repository=repo)
        result = await GuestHighAmountVsEmailAverageRule().evaluate(ctx)
        assert result.triggered
        assert result.score == 20

    @pytest.mark.asyncio
    async def test_excessive_email_donations(self, store):
        await _bump(store, counter_key("txncount", "email", EMAIL), 15)
        ctx = make_context(make_payment(donor_email=EMAIL), counters=store)
        result = await GuestExcessiveEmailDonationsRule().evaluate(ctx)
        assert result.triggered
        assert result.score == 40

    @pytest.mark.asyncio
    async def test_no_email(self, store):
        ctx = make_context(_guest_payment(), counters=store)
        assert not (await GuestExcessiveEmailDonationsRule().evaluate(ctx)).triggered
        assert ctx.counts == {}


class TestSharedPhoneCounter:
    @pytest.mark.asyncio
    async def test_one_increment_per_pass(self, store):
        ctx = make_context(_guest_payment(), counters=store)
        for rule in (
            GuestExcessiveDonationsRule(),
            GuestLowCampaignDiversityRule(),
            GuestStructuringSmallAmountsRule(),
        ):
            await rule.evaluate(ctx)
        assert ctx.counts[phone_hour_key(PHONE)] == 1
        assert await store.increment_with_window(phone_hour_key(PHONE), 3600) == 2
