"""
championship/services/event_collector.py
Event Collector: source records -> ScoringEvent.

Each source reads one table and yields facts already attributed to one
unit and one category. Collection is a fresh pass over every source on
each synchronization; nothing is cached between runs.

All-or-nothing: if any source raises, the whole collection fails with
PartialSourceFailureError naming that source. A ranking missing one
category would compare units unfairly.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import AsyncIterator, FrozenSet, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from championship.errors import PartialSourceFailureError
from championship.orm.demerit import Demerit
from championship.orm.source_records import (
    AttendanceRecord, AttendanceStatus, BadgeDelivery, DuesPayment, Evaluation,
    EVALUATION_COLOR_POINTS,
)
from championship.services.score_catalog import ScoreCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringEvent:
    """One normalized fact. `units` is multiplied by the category weight."""
    unit_id: int
    category: ScoreCategory
    units: int
    occurred_on: date
    source_ref: str


@dataclass(frozen=True)
class CollectionScope:
    championship_id: int
    start_date: date
    end_date: date
    unit_ids: FrozenSet[int]

    def admits(self, unit_id: int, day: Optional[date]) -> bool:
        return (
            unit_id in self.unit_ids
            and day is not None
            and self.start_date <= day <= self.end_date
        )


class EventSource:
    """A finite, independently failing input."""
    name = "source"

    async def events(self, db: AsyncSession, scope: CollectionScope) -> AsyncIterator[ScoringEvent]:
        raise NotImplementedError
        yield  # pragma: no cover


class AttendanceSource(EventSource):
    name = "attendance"

    async def events(self, db, scope):
        result = await db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.unit_id.in_(scope.unit_ids),
                AttendanceRecord.meeting_date >= scope.start_date,
                AttendanceRecord.meeting_date <= scope.end_date,
                AttendanceRecord.status.in_([
                    AttendanceStatus.PUNCTUAL.value,
                    AttendanceStatus.LATE.value,
                ]),
            ).order_by(AttendanceRecord.id)
        )
        for record in result.scalars():
            if not scope.admits(record.unit_id, record.meeting_date):
                continue
            category = (
                ScoreCategory.ATTENDANCE_PUNCTUAL
                if record.status == AttendanceStatus.PUNCTUAL.value
                else ScoreCategory.ATTENDANCE_LATE
            )
            yield ScoringEvent(
                unit_id=record.unit_id,
                category=category,
                units=1,
                occurred_on=record.meeting_date,
                source_ref=f"attendance:{record.id}",
            )


class DuesSource(EventSource):
    """Installments paid on or before their due date, dated by payment."""
    name = "payments"

    async def events(self, db, scope):
        result = await db.execute(
            select(DuesPayment).where(
                DuesPayment.unit_id.in_(scope.unit_ids),
                DuesPayment.paid_on.is_not(None),
                DuesPayment.paid_on >= scope.start_date,
                DuesPayment.paid_on <= scope.end_date,
            ).order_by(DuesPayment.id)
        )
        for payment in result.scalars():
            if payment.paid_on > payment.due_date:
                continue
            if not scope.admits(payment.unit_id, payment.paid_on):
                continue
            yield ScoringEvent(
                unit_id=payment.unit_id,
                category=ScoreCategory.PAYMENT_ON_TIME,
                units=1,
                occurred_on=payment.paid_on,
                source_ref=f"payment:{payment.id}",
            )


class DemeritSource(EventSource):
    name = "demerits"

    async def events(self, db, scope):
        result = await db.execute(
            select(Demerit).where(
                Demerit.championship_id == scope.championship_id,
                Demerit.unit_id.in_(scope.unit_ids),
                Demerit.voided_at.is_(None),
                Demerit.occurred_on >= scope.start_date,
                Demerit.occurred_on <= scope.end_date,
            ).order_by(Demerit.id)
        )
        for demerit in result.scalars():
            if not scope.admits(demerit.unit_id, demerit.occurred_on):
                continue
            yield ScoringEvent(
                unit_id=demerit.unit_id,
                category=ScoreCategory.DEMERIT,
                units=demerit.points_delta,
                occurred_on=demerit.occurred_on,
                source_ref=f"demerit:{demerit.id}",
            )


class BadgeSource(EventSource):
    name = "badges"

    async def events(self, db, scope):
        result = await db.execute(
            select(BadgeDelivery).where(
                BadgeDelivery.unit_id.in_(scope.unit_ids),
                BadgeDelivery.delivered_on >= scope.start_date,
                BadgeDelivery.delivered_on <= scope.end_date,
            ).order_by(BadgeDelivery.id)
        )
        for delivery in result.scalars():
            if not scope.admits(delivery.unit_id, delivery.delivered_on):
                continue
            yield ScoringEvent(
                unit_id=delivery.unit_id,
                category=ScoreCategory.BADGE_DELIVERED,
                units=1,
                occurred_on=delivery.delivered_on,
                source_ref=f"badge:{delivery.id}",
            )


class EvaluationSource(EventSource):
    name = "evaluations"

    async def events(self, db, scope):
        result = await db.execute(
            select(Evaluation).where(
                Evaluation.championship_id == scope.championship_id,
                Evaluation.unit_id.in_(scope.unit_ids),
                Evaluation.evaluated_on >= scope.start_date,
                Evaluation.evaluated_on <= scope.end_date,
            ).order_by(Evaluation.id)
        )
        for evaluation in result.scalars():
            if not scope.admits(evaluation.unit_id, evaluation.evaluated_on):
                continue
            points = EVALUATION_COLOR_POINTS.get(evaluation.color)
            if points is None:
                logger.warning(
                    f"Skipping evaluation {evaluation.id} with unknown color '{evaluation.color}'"
                )
                continue
            yield ScoringEvent(
                unit_id=evaluation.unit_id,
                category=ScoreCategory.EVALUATION,
                units=points,
                occurred_on=evaluation.evaluated_on,
                source_ref=f"evaluation:{evaluation.id}",
            )


DEFAULT_SOURCES: Sequence[EventSource] = (
    AttendanceSource(),
    DuesSource(),
    DemeritSource(),
    BadgeSource(),
    EvaluationSource(),
)


class EventCollector:
    def __init__(self, sources: Optional[Sequence[EventSource]] = None):
        self.sources = list(sources) if sources is not None else list(DEFAULT_SOURCES)

    async def collect(self, db: AsyncSession, scope: CollectionScope) -> AsyncIterator[ScoringEvent]:
        """
        Yield every event in scope, one source after the other.

        Raises:
            PartialSourceFailureError: a source raised while being read
        """
        if not scope.unit_ids:
            return
        for source in self.sources:
            count = 0
            try:
                async for event in source.events(db, scope):
                    count += 1
                    yield event
            except PartialSourceFailureError:
                raise
            except Exception as e:
                logger.error(
                    f"Scoring source '{source.name}' failed for championship "
                    f"{scope.championship_id}: {type(e).__name__}: {e}"
                )
                raise PartialSourceFailureError(source.name, reason=str(e)) from e
            logger.debug(f"Source '{source.name}' yielded {count} events")

    async def collect_all(self, db: AsyncSession, scope: CollectionScope) -> List[ScoringEvent]:
        return [event async for event in self.collect(db, scope)]
