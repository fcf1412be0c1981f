"""AML scoring pipeline: rules -> persist verdict -> alert."""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from .alerts import create_alert, publish_alert
from .config import AMLConfig, default_config
from .context import EvaluationContext
from .counters import CounterStore
from .models import ActorSnapshot, AnalysisResult, PaymentSnapshot
from .repository import AMLRepository
from .rules_engine import RulesEngine

logger = structlog.get_logger()

DEFAULT_ALERT_TOPIC = "donation.aml.alerts"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AMLScorer:
    """Orchestrates one scoring pass for a payment.

    The verdict write and the alert write are separate steps: a failed verdict
    write fails the pass so the job is retried, a failed alert write is only
    logged.
    """

    def __init__(
        self,
        counter_store: CounterStore,
        config: AMLConfig | None = None,
        kafka_producer=None,
        alert_topic: str = DEFAULT_ALERT_TOPIC,
        rules_engine: RulesEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or default_config
        self._counter_store = counter_store
        self._rules_engine = rules_engine or RulesEngine()
        self._kafka_producer = kafka_producer
        self._alert_topic = alert_topic
        self._clock = clock or _utcnow

    async def evaluate(
        self,
        payment: PaymentSnapshot,
        actor: ActorSnapshot | None,
        repository: AMLRepository,
        now: datetime | None = None,
    ) -> AnalysisResult:
        """Score a payment, write the verdict onto it and raise an alert if needed."""
        ctx = EvaluationContext(
            payment=payment,
            actor=actor,
            counters=self._counter_store,
            repository=repository,
            config=self._config,
            now=now or self._clock(),
        )

        # 1. Evaluate rules
        verdict, rule_results = await self._rules_engine.evaluate(ctx)

        # 2. Persist verdict (always, even at score 0)
        try:
            await repository.write_verdict(payment.payment_id, verdict, ctx.now)
        except Exception:
            logger.exception(
                "verdict_persist_failed",
                payment_id=payment.payment_id,
                risk_score=verdict.risk_score,
            )
            raise

        # 3. Create alert at or above the review threshold (one per payment)
        alert_id, alert = await create_alert(verdict, ctx, repository)

        # 4. Publish newly created alerts
        if alert and self._kafka_producer:
            await publish_alert(alert, self._kafka_producer, self._alert_topic)

        logger.info(
            "payment_analyzed",
            payment_id=payment.payment_id,
            risk_score=verdict.risk_score,
            status=verdict.status.value,
            indicators=[i.value for i in verdict.indicators],
            self_donation=ctx.is_self_donation,
            counters=ctx.counts,
            alert_id=alert_id,
        )

        return AnalysisResult(
            payment_id=payment.payment_id,
            verdict=verdict,
            alert_id=alert_id,
            rule_results=[r for r in rule_results if r.triggered],
            analyzed_at=ctx.now,
        )
