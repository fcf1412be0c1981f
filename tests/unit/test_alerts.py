"""Unit tests for AML alert creation and publishing."""

import json
from unittest.mock import AsyncMock

import pytest

from src.domains.aml.alerts import build_alert_metadata, create_alert, publish_alert
from src.domains.aml.models import (
    AlertOutcome,
    AMLStatus,
    Indicator,
    ReportType,
    Verdict,
)
from tests.conftest import NOW, make_context, make_payment
from tests.fakes import InMemoryAMLRepository


def _verdict(score: int, *indicators: Indicator) -> Verdict:
    status = AMLStatus.OK
    if score >= 80:
        status = AMLStatus.BLOCKED
    elif score >= 60:
        status = AMLStatus.PENDING_REVIEW
    return Verdict(risk_score=score, indicators=list(indicators), status=status)


def _guest_ctx(repo: InMemoryAMLRepository):
    payment = make_payment(
        donation_id="don-1",
        donor_phone="9800000001",
        ip="10.0.0.1",
        country="Nepal",
        country_code="NP",
        is_vpn_detected=None,
        amount=300,
    )
    return make_context(payment, repository=repo)


class TestCreateAlert:
    @pytest.mark.asyncio
    async def test_below_review_threshold(self):
        repo = InMemoryAMLRepository()
        alert_id, alert = await create_alert(_verdict(59), _guest_ctx(repo), repo)
        assert alert_id is None
        assert alert is None
        assert repo.alerts == {}

    @pytest.mark.asyncio
    async def test_at_review_threshold(self):
        repo = InMemoryAMLRepository()
        verdict = _verdict(60, Indicator.GUEST_EXCESSIVE_DONATIONS_1H, Indicator.VPN_OR_TOR)
        alert_id, alert = await create_alert(verdict, _guest_ctx(repo), repo)
        assert alert_id == alert.alert_id
        stored = repo.alerts["pay-1"]
        assert stored.risk_score == 60
        assert stored.indicators == verdict.indicators
        assert stored.user_id is None
        assert stored.donation_id == "don-1"
        assert stored.reviewed is False
        assert stored.outcome == AlertOutcome.NONE
        assert stored.report_type == ReportType.NONE
        assert stored.created_at == NOW

    @pytest.mark.asyncio
    async def test_existing_alert_returned(self):
        repo = InMemoryAMLRepository()
        first_id, _ = await create_alert(_verdict(90), _guest_ctx(repo), repo)
        second_id, second = await create_alert(_verdict(95), _guest_ctx(repo), repo)
        assert second_id == first_id
        assert second is None
        assert len(repo.alerts) == 1
        assert repo.alerts["pay-1"].risk_score == 90

    @pytest.mark.asyncio
    async def test_concurrent_insert_resolves_to_existing(self):
        repo = InMemoryAMLRepository()
        first_id, _ = await create_alert(_verdict(90), _guest_ctx(repo), repo)
        repo.hide_existing_alerts = True
        second_id, second = await create_alert(_verdict(90), _guest_ctx(repo), repo)
        assert second_id == first_id
        assert second is None
        assert len(repo.alerts) == 1

    @pytest.mark.asyncio
    async def test_persist_failure_is_swallowed(self):
        repo = InMemoryAMLRepository()
        repo.fail_alert_insert = True
        alert_id, alert = await create_alert(_verdict(90), _guest_ctx(repo), repo)
        assert alert_id is None
        assert alert is None


class TestAlertMetadata:
    def test_snapshot_fields(self):
        ctx = _guest_ctx(InMemoryAMLRepository())
        ctx.is_self_donation = True
        metadata = build_alert_metadata(ctx)
        assert metadata.ip == "10.0.0.1"
        assert metadata.country == "Nepal"
        assert metadata.country_code == "NP"
        assert metadata.amount == 300
        assert metadata.payment_method == "khalti"
        assert metadata.donor_phone == "9800000001"
        assert metadata.donor_email is None
        assert metadata.is_vpn_detected is False
        assert metadata.campaign_id == "camp-1"
        assert metadata.is_self_donation is True


class TestPublishAlert:
    @pytest.mark.asyncio
    async def test_publishes_json_keyed_by_payment(self):
        repo = InMemoryAMLRepository()
        _, alert = await create_alert(_verdict(85), _guest_ctx(repo), repo)
        producer = AsyncMock()
        await publish_alert(alert, producer, "donation.aml.alerts")

        producer.send_and_wait.assert_awaited_once()
        args, kwargs = producer.send_and_wait.call_args
        assert args == ("donation.aml.alerts",)
        assert kwargs["key"] == b"pay-1"
        payload = json.loads(kwargs["value"])
        assert payload["alert_id"] == alert.alert_id
        assert payload["risk_score"] == 85

    @pytest.mark.asyncio
    async def test_no_producer(self):
        repo = InMemoryAMLRepository()
        _, alert = await create_alert(_verdict(85), _guest_ctx(repo), repo)
        await publish_alert(alert, None, "donation.aml.alerts")

    @pytest.mark.asyncio
    async def test_publish_failure_logged(self):
        repo = InMemoryAMLRepository()
        _, alert = await create_alert(_verdict(85), _guest_ctx(repo), repo)
        producer = AsyncMock()
        producer.send_and_wait.side_effect = ConnectionError("kafka down")
        await publish_alert(alert, producer, "donation.aml.alerts")
