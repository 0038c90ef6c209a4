"""
Evaluation Service Tests
"""
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from championship.errors import (
    ChampionshipClosedError, ErrorCode, ForbiddenError, InvalidStateError, NotFoundError,
    ValidationError,
)
from championship.orm import ChampionshipStatus, Evaluation, RankingSnapshot, UnitScoreEntry
from championship.services import evaluation_service
from championship.services.championship_service import ChampionshipService

TODAY = date(2026, 6, 15)


async def evaluation_rows(db) -> int:
    result = await db.execute(select(func.count(Evaluation.id)))
    return result.scalar_one()


async def record(db, caller, championship, unit, day=date(2026, 6, 1), color="green"):
    return await evaluation_service.create_evaluation(
        db, caller, championship.id, unit.id, day, "commitment", "uniform", color, today=TODAY
    )


class TestCreateEvaluation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("color,points", [("green", 50), ("yellow", 30), ("red", 10)])
    async def test_color_sets_points(self, db, seed, admin, color, points):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")

        evaluation = await record(db, admin, championship, unit, color=color)

        assert evaluation.points == points
        assert evaluation.to_dict()["points"] == points
        assert evaluation.created_by == admin.user_id

    @pytest.mark.asyncio
    async def test_missing_fields_reported_together(self, db, seed, admin):
        championship = await seed.championship()

        with pytest.raises(ValidationError) as exc:
            await evaluation_service.create_evaluation(
                db, admin, championship.id, None, None, " ", None, None, today=TODAY
            )

        assert exc.value.code == ErrorCode.MISSING_FIELD
        assert set(exc.value.fields) == {"unit_id", "date", "area", "type", "color"}

    @pytest.mark.asyncio
    async def test_unknown_color_rejected(self, db, seed, admin):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")

        with pytest.raises(ValidationError) as exc:
            await record(db, admin, championship, unit, color="blue")
        assert "color" in exc.value.fields
        assert await evaluation_rows(db) == 0

    @pytest.mark.asyncio
    async def test_future_date_rejected(self, db, seed, admin):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")

        with pytest.raises(ValidationError) as exc:
            await record(db, admin, championship, unit, day=TODAY + timedelta(days=1))
        assert "date" in exc.value.fields

    @pytest.mark.asyncio
    async def test_date_outside_window_rejected(self, db, seed, admin):
        championship = await seed.championship(start_date=date(2026, 3, 1), end_date=date(2026, 11, 30))
        unit = await seed.unit("Falcons")

        with pytest.raises(ValidationError) as exc:
            await record(db, admin, championship, unit, day=date(2026, 2, 28))
        assert exc.value.fields["date"] == "Date is outside the championship period"

    @pytest.mark.asyncio
    async def test_inactive_unit_rejected(self, db, seed, admin):
        championship = await seed.championship()
        unit = await seed.unit("Dormant", is_active=False)

        with pytest.raises(ValidationError) as exc:
            await record(db, admin, championship, unit)
        assert "unit_id" in exc.value.fields

    @pytest.mark.asyncio
    async def test_closed_championship_rejects(self, db, seed, admin):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        await ChampionshipService.close(db, admin, championship.id)

        with pytest.raises(ChampionshipClosedError):
            await record(db, admin, championship, unit)
        assert await evaluation_rows(db) == 0

    @pytest.mark.asyncio
    async def test_draft_championship_rejects(self, db, seed, admin):
        championship = await seed.championship(status=ChampionshipStatus.DRAFT)
        unit = await seed.unit("Falcons")

        with pytest.raises(InvalidStateError):
            await record(db, admin, championship, unit)

    @pytest.mark.asyncio
    async def test_counselor_cannot_record(self, db, seed, counselor):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        with pytest.raises(ForbiddenError):
            await record(db, counselor(unit.id), championship, unit)


class TestListEvaluations:

    @pytest.mark.asyncio
    async def test_requires_unit_and_date(self, db, seed, admin):
        championship = await seed.championship()

        with pytest.raises(ValidationError) as exc:
            await evaluation_service.list_evaluations(db, admin, championship.id, None, None)
        assert set(exc.value.fields) == {"unit_id", "date"}

    @pytest.mark.asyncio
    async def test_filters_by_unit_and_day_oldest_first(self, db, seed, admin):
        championship = await seed.championship()
        falcons = await seed.unit("Falcons")
        hawks = await seed.unit("Hawks")
        day = date(2026, 5, 2)
        first = await seed.evaluation(championship, falcons, day)
        second = await seed.evaluation(championship, falcons, day, color="red")
        await seed.evaluation(championship, falcons, day + timedelta(days=1))
        await seed.evaluation(championship, hawks, day)

        evaluations = await evaluation_service.list_evaluations(db, admin, championship.id, falcons.id, day)

        assert [e.id for e in evaluations] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_unknown_championship(self, db, admin):
        with pytest.raises(NotFoundError):
            await evaluation_service.list_evaluations(db, admin, 999, 1, date(2026, 5, 2))


class TestDeleteEvaluation:

    @pytest.mark.asyncio
    async def test_delete_removes_the_row(self, db, seed, admin):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        evaluation = await seed.evaluation(championship, unit, date(2026, 5, 2))

        await evaluation_service.delete_evaluation(db, admin, evaluation.id)

        assert await evaluation_rows(db) == 0

    @pytest.mark.asyncio
    async def test_unknown_evaluation(self, db, admin):
        with pytest.raises(NotFoundError) as exc:
            await evaluation_service.delete_evaluation(db, admin, 12345)
        assert exc.value.code == ErrorCode.EVALUATION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_closed_championship_rejects_delete(self, db, seed, admin):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        evaluation = await seed.evaluation(championship, unit, date(2026, 5, 2))
        await ChampionshipService.close(db, admin, championship.id)

        with pytest.raises(ChampionshipClosedError):
            await evaluation_service.delete_evaluation(db, admin, evaluation.id)
        assert await evaluation_rows(db) == 1

    @pytest.mark.asyncio
    async def test_counselor_cannot_delete(self, db, seed, counselor):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        evaluation = await seed.evaluation(championship, unit, date(2026, 5, 2))

        with pytest.raises(ForbiddenError):
            await evaluation_service.delete_evaluation(db, counselor(unit.id), evaluation.id)


class TestEvaluationsInRanking:

    @pytest.mark.asyncio
    async def test_recorded_then_deleted_evaluation(self, db, seed, admin, synchronizer, session_factory):
        championship = await seed.championship()
        unit = await seed.unit("Falcons")
        await synchronizer.initialize(championship.id, admin)

        evaluation = await record(db, admin, championship, unit, color="yellow")
        first = await synchronizer.synchronize(championship.id, admin)
        await evaluation_service.delete_evaluation(db, admin, evaluation.id)
        second = await synchronizer.synchronize(championship.id, admin)

        async with session_factory() as s:
            totals = await s.execute(
                select(RankingSnapshot.version, UnitScoreEntry.total)
                .join(UnitScoreEntry, UnitScoreEntry.snapshot_id == RankingSnapshot.id)
                .where(RankingSnapshot.championship_id == championship.id)
            )
            by_version = dict(totals.all())
        assert by_version[first.version] == 30
        assert by_version[second.version] == 0
