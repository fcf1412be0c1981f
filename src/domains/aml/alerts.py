"""AML alert pipeline: creation, per-payment idempotency, and Kafka publishing."""

import json
import uuid

import structlog

from .context import EvaluationContext
from .models import (
    REVIEW_THRESHOLD,
    AlertMetadata,
    AlertRecord,
    Verdict,
)
from .repository import AlertAlreadyExistsError, AMLRepository

logger = structlog.get_logger()


def build_alert_metadata(ctx: EvaluationContext) -> AlertMetadata:
    """Snapshot the payment fields a reviewer needs, as they are right now."""
    payment = ctx.payment
    return AlertMetadata(
        ip=payment.ip,
        country=payment.country,
        country_code=payment.country_code,
        amount=payment.amount,
        payment_method=payment.payment_method,
        donor_phone=payment.donor_phone,
        donor_email=payment.donor_email,
        is_vpn_detected=bool(payment.is_vpn_detected),
        campaign_id=payment.campaign_id,
        is_self_donation=ctx.is_self_donation,
    )


async def create_alert(
    verdict: Verdict,
    ctx: EvaluationContext,
    repository: AMLRepository,
) -> tuple[str | None, AlertRecord | None]:
    """Create an alert for a verdict at or above the review threshold.

    Returns ``(alert_id, created_alert)``. At most one alert exists per payment:
    when one is already recorded its id is returned with ``None`` as the
    created alert. Persistence failures are logged and yield ``(None, None)``.
    """
    if verdict.risk_score < REVIEW_THRESHOLD:
        return None, None

    payment = ctx.payment
    try:
        existing_id = await repository.find_alert_id(payment.payment_id)
        if existing_id:
            logger.info(
                "alert_deduplicated",
                payment_id=payment.payment_id,
                alert_id=existing_id,
            )
            return existing_id, None

        alert = AlertRecord(
            alert_id=str(uuid.uuid4()),
            user_id=payment.user_id,
            payment_id=payment.payment_id,
            donation_id=payment.donation_id,
            risk_score=verdict.risk_score,
            indicators=list(verdict.indicators),
            created_at=ctx.now,
            metadata=build_alert_metadata(ctx),
        )
        await repository.insert_alert(alert)
    except AlertAlreadyExistsError as exc:
        logger.info(
            "alert_deduplicated",
            payment_id=payment.payment_id,
            alert_id=exc.alert_id,
        )
        return exc.alert_id, None
    except Exception:
        logger.exception("alert_persist_failed", payment_id=payment.payment_id)
        return None, None

    logger.warning(
        "aml_alert_created",
        alert_id=alert.alert_id,
        payment_id=payment.payment_id,
        user_id=payment.user_id,
        risk_score=verdict.risk_score,
        status=verdict.status.value,
        indicators=[i.value for i in verdict.indicators],
    )
    return alert.alert_id, alert


async def publish_alert(alert: AlertRecord, producer, topic: str) -> None:
    """Publish alert to Kafka topic for the compliance team.

    Args:
        alert: The persisted alert.
        producer: An aiokafka AIOKafkaProducer instance.
        topic: Destination topic.
    """
    if producer is None:
        logger.debug("kafka_producer_not_available", alert_id=alert.alert_id)
        return

    payload = alert.model_dump(mode="json")
    key = alert.payment_id

    try:
        await producer.send_and_wait(
            topic,
            value=json.dumps(payload).encode("utf-8"),
            key=key.encode("utf-8"),
        )
        logger.info("alert_published_to_kafka", alert_id=alert.alert_id, topic=topic)
    except Exception:
        logger.exception("alert_publish_failed", alert_id=alert.alert_id, topic=topic)
