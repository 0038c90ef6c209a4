"""
Event Collector Tests

- Window and active-unit scoping
- One event per qualifying source row
- All-or-nothing on source failure
"""
from collections import Counter
from datetime import date

import pytest

from championship.errors import PartialSourceFailureError
from championship.orm import ChampionshipStatus
from championship.services.event_collector import (
    AttendanceSource, CollectionScope, EventCollector, EventSource,
)
from championship.services.score_catalog import ScoreCategory


class BrokenSource(EventSource):
    name = "payments"

    async def events(self, db, scope):
        raise ConnectionError("billing database unreachable")
        yield


def scope_for(championship, *units):
    return CollectionScope(
        championship_id=championship.id,
        start_date=championship.start_date,
        end_date=championship.end_date,
        unit_ids=frozenset(u.id for u in units),
    )


class TestCollection:

    @pytest.mark.asyncio
    async def test_each_source_is_normalized(self, db, seed):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        day = date(2026, 3, 7)

        await seed.attendance(unit, day, "punctual", count=3)
        await seed.attendance(unit, day, "late", count=2)
        await seed.attendance(unit, day, "absent", count=4)
        await seed.attendance(unit, day, "excused", count=1)
        await seed.payment(unit, due_date=date(2026, 3, 10), paid_on=date(2026, 3, 9))
        await seed.payment(unit, due_date=date(2026, 3, 10), paid_on=date(2026, 3, 12))
        await seed.payment(unit, due_date=date(2026, 4, 10), paid_on=None)
        await seed.badge(unit, day, count=2)
        await seed.evaluation(championship, unit, day, color="yellow")
        await seed.demerit(championship, unit, day, points=-15)

        events = await EventCollector().collect_all(db, scope_for(championship, unit))
        counts = Counter(e.category for e in events)

        assert counts[ScoreCategory.ATTENDANCE_PUNCTUAL] == 3
        assert counts[ScoreCategory.ATTENDANCE_LATE] == 2
        assert counts[ScoreCategory.PAYMENT_ON_TIME] == 1
        assert counts[ScoreCategory.BADGE_DELIVERED] == 2
        assert counts[ScoreCategory.EVALUATION] == 1
        assert counts[ScoreCategory.DEMERIT] == 1

        evaluation = next(e for e in events if e.category == ScoreCategory.EVALUATION)
        assert evaluation.units == 30
        demerit = next(e for e in events if e.category == ScoreCategory.DEMERIT)
        assert demerit.units == -15
        assert all(e.unit_id == unit.id for e in events)

    @pytest.mark.asyncio
    async def test_facts_outside_window_are_excluded(self, db, seed):
        championship = await seed.championship(start_date=date(2026, 2, 1), end_date=date(2026, 2, 28))
        unit = await seed.unit("Falcons")
        await seed.attendance(unit, date(2026, 1, 31))
        await seed.attendance(unit, date(2026, 2, 1))
        await seed.attendance(unit, date(2026, 2, 28))
        await seed.attendance(unit, date(2026, 3, 1))

        events = await EventCollector().collect_all(db, scope_for(championship, unit))

        assert sorted(e.occurred_on for e in events) == [date(2026, 2, 1), date(2026, 2, 28)]

    @pytest.mark.asyncio
    async def test_units_outside_scope_are_excluded(self, db, seed):
        championship = await seed.championship()
        active = await seed.unit("Falcons")
        other = await seed.unit("Dormant", is_active=False)
        await seed.attendance(active, date(2026, 3, 1))
        await seed.attendance(other, date(2026, 3, 1))

        events = await EventCollector().collect_all(db, scope_for(championship, active))

        assert {e.unit_id for e in events} == {active.id}

    @pytest.mark.asyncio
    async def test_voided_and_foreign_demerits_are_excluded(self, db, seed):
        championship = await seed.championship()
        other_championship = await seed.championship(
            status=ChampionshipStatus.CLOSED, name="Championship 2025",
            start_date=date(2026, 1, 1), end_date=date(2026, 12, 31),
        )
        unit = await seed.unit("Falcons")
        kept = await seed.demerit(championship, unit, date(2026, 3, 1))
        voided = await seed.demerit(championship, unit, date(2026, 3, 2))
        await seed.demerit(other_championship, unit, date(2026, 3, 3))
        voided.voided_at = voided.created_at
        await db.commit()

        events = await EventCollector().collect_all(db, scope_for(championship, unit))

        assert [e.source_ref for e in events] == [f"demerit:{kept.id}"]

    @pytest.mark.asyncio
    async def test_empty_scope_yields_nothing(self, db, seed):
        championship = await seed.championship()
        events = await EventCollector().collect_all(db, scope_for(championship))
        assert events == []


class TestSourceFailure:

    @pytest.mark.asyncio
    async def test_failing_source_fails_collection(self, db, seed):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        await seed.attendance(unit, date(2026, 3, 1))

        collector = EventCollector([AttendanceSource(), BrokenSource()])
        with pytest.raises(PartialSourceFailureError) as exc:
            await collector.collect_all(db, scope_for(championship, unit))

        assert exc.value.source == "payments"
        assert exc.value.status_code == 503
        assert exc.value.details == {"source": "payments"}

