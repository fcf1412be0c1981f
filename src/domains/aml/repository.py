"""Data access for the AML engine: payments, actors, campaigns, alerts."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import Alert as AlertDB
from src.db.models import Campaign as CampaignDB
from src.db.models import Payment as PaymentDB
from src.db.models import User as UserDB

from .models import (
    ActorSnapshot,
    AlertRecord,
    CampaignCreator,
    PaymentSnapshot,
    Verdict,
)

logger = structlog.get_logger()

COMPLETED_STATUS = "Completed"


class AlertAlreadyExistsError(Exception):
    """Raised by ``insert_alert`` when the payment already has an alert."""

    def __init__(self, payment_id: str, alert_id: str | None = None) -> None:
        super().__init__(f"Alert already exists for payment {payment_id}")
        self.payment_id = payment_id
        self.alert_id = alert_id


class AMLRepository(ABC):
    """Persistence collaborator used by the rules, the scorer and the worker."""

    @abstractmethod
    async def get_payment(self, payment_id: str) -> PaymentSnapshot | None: ...

    @abstractmethod
    async def get_actor(self, user_id: str) -> ActorSnapshot | None: ...

    @abstractmethod
    async def average_amount(
        self,
        *,
        user_id: str | None = None,
        donor_phone: str | None = None,
        donor_email: str | None = None,
        exclude_payment_id: str | None = None,
    ) -> float | None:
        """Mean amount of prior completed payments for one actor or guest contact.

        Guest lookups only consider payments without a user. Returns None when
        there is no history.
        """
        ...

    @abstractmethod
    async def guest_campaigns_since(self, donor_phone: str, since: datetime) -> set[str]:
        """Distinct campaigns of completed guest payments for a phone since ``since``."""
        ...

    @abstractmethod
    async def get_campaign_creator(self, campaign_id: str) -> CampaignCreator | None: ...

    @abstractmethod
    async def write_verdict(self, payment_id: str, verdict: Verdict, analyzed_at: datetime) -> None:
        """Overwrite the verdict fields on the payment without touching other columns."""
        ...

    @abstractmethod
    async def find_alert_id(self, payment_id: str) -> str | None: ...

    @abstractmethod
    async def insert_alert(self, alert: AlertRecord) -> str:
        """Persist ``alert``; raise AlertAlreadyExistsError on a duplicate payment."""
        ...


def _payment_to_snapshot(row: PaymentDB) -> PaymentSnapshot:
    return PaymentSnapshot(
        payment_id=row.id,
        amount=row.amount,
        campaign_id=row.campaign_id,
        user_id=row.user_id,
        donation_id=row.donation_id,
        donor_phone=row.donor_phone,
        donor_email=row.donor_email,
        ip=row.ip,
        country=row.country,
        country_code=row.country_code,
        is_vpn_detected=row.is_vpn_detected,
        payment_method=row.payment_method,
        status=row.status,
        refunded=bool(row.refunded),
        created_at=row.created_at,
    )


class SqlAlchemyAMLRepository(AMLRepository):
    """AMLRepository over an async SQLAlchemy session.

    Every write commits immediately so the verdict and the alert are durable
    independently of each other.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_payment(self, payment_id: str) -> PaymentSnapshot | None:
        stmt = select(PaymentDB).where(PaymentDB.id == payment_id)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return _payment_to_snapshot(row) if row else None

    async def get_actor(self, user_id: str) -> ActorSnapshot | None:
        stmt = select(UserDB).where(UserDB.id == user_id)
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if not row:
            return None
        return ActorSnapshot(user_id=row.id, created_at=row.created_at, country=row.country)

    async def average_amount(
        self,
        *,
        user_id: str | None = None,
        donor_phone: str | None = None,
        donor_email: str | None = None,
        exclude_payment_id: str | None = None,
    ) -> float | None:
        filters = [PaymentDB.status == COMPLETED_STATUS]
        if user_id is not None:
            filters.append(PaymentDB.user_id == user_id)
        elif donor_phone is not None:
            filters += [PaymentDB.user_id.is_(None), PaymentDB.donor_phone == donor_phone]
        elif donor_email is not None:
            filters += [PaymentDB.user_id.is_(None), PaymentDB.donor_email == donor_email]
        else:
            raise ValueError("average_amount needs a user_id, donor_phone or donor_email")
        if exclude_payment_id is not None:
            filters.append(PaymentDB.id != exclude_payment_id)

        stmt = select(func.avg(PaymentDB.amount)).where(*filters)
        result = await self._session.execute(stmt)
        avg = result.scalar_one()
        return float(avg) if avg is not None else None

    async def guest_campaigns_since(self, donor_phone: str, since: datetime) -> set[str]:
        stmt = select(func.distinct(PaymentDB.campaign_id)).where(
            PaymentDB.user_id.is_(None),
            PaymentDB.donor_phone == donor_phone,
            PaymentDB.status == COMPLETED_STATUS,
            PaymentDB.created_at >= since,
        )
        result = await self._session.execute(stmt)
        return {row[0] for row in result.fetchall()}

    async def get_campaign_creator(self, campaign_id: str) -> CampaignCreator | None:
        stmt = (
            select(UserDB.id, UserDB.email, UserDB.phone)
            .join(CampaignDB, CampaignDB.creator_id == UserDB.id)
            .where(CampaignDB.id == campaign_id)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        if not row:
            return None
        return CampaignCreator(user_id=row[0], email=row[1], phone=row[2])

    async def write_verdict(self, payment_id: str, verdict: Verdict, analyzed_at: datetime) -> None:
        stmt = (
            update(PaymentDB)
            .where(PaymentDB.id == payment_id)
            .values(
                risk_score=verdict.risk_score,
                flags=[i.value for i in verdict.indicators],
                aml_status=verdict.status.value,
                aml_analyzed_at=analyzed_at,
            )
        )
        await self._session.execute(stmt)
        await self._session.commit()

    async def find_alert_id(self, payment_id: str) -> str | None:
        stmt = select(AlertDB.alert_id).where(AlertDB.payment_id == payment_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def insert_alert(self, alert: AlertRecord) -> str:
        row = AlertDB(
            alert_id=alert.alert_id,
            user_id=alert.user_id,
            payment_id=alert.payment_id,
            donation_id=alert.donation_id,
            risk_score=alert.risk_score,
            indicators=[i.value for i in alert.indicators],
            created_at=alert.created_at or datetime.now(UTC),
            reviewed=alert.reviewed,
            outcome=alert.outcome.value,
            report_type=alert.report_type.value,
            alert_metadata=alert.metadata.model_dump(mode="json"),
        )
        self._session.add(row)
        try:
            await self._session.commit()
        except IntegrityError as exc:
            # Unique constraint on payment_id: another attempt got there first
            await self._session.rollback()
            existing = await self.find_alert_id(alert.payment_id)
            raise AlertAlreadyExistsError(alert.payment_id, existing) from exc
        return alert.alert_id


def session_repository_factory(session_factory):
    """Wrap an ``async_sessionmaker`` so each call yields a repository on a new session."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[AMLRepository]:
        async with session_factory() as session:
            yield SqlAlchemyAMLRepository(session)

    return factory
