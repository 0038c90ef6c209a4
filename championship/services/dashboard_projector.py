"""
championship/services/dashboard_projector.py
Read-only dashboard views over the current ranking snapshot.

Nothing here recomputes scores or writes anything. A stale snapshot is a
valid answer; every view carries `version` and `synced_at` so callers can
tell how old it is.

The unit view and the counselor feeds only ever contain that unit's own
demerits. The feeds read evaluations and demerits directly.
"""
import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from championship.config.settings import feature_flags, settings
from championship.errors import ErrorCode, NoActiveChampionshipError, NotFoundError
from championship.orm.championship import Championship
from championship.orm.class_progress import ClassTier
from championship.orm.demerit import Demerit
from championship.orm.ranking_snapshot import RankingSnapshot
from championship.orm.source_records import Evaluation, EVALUATION_COLOR_POINTS
from championship.orm.unit import Unit
from championship.security.capabilities import Caller
from championship.services.goal_tracker import GOAL_COMPLETED, goals_for_units
from championship.services.ranking_synchronizer import verify_snapshot

logger = logging.getLogger(__name__)


async def get_current_snapshot(
    db: AsyncSession,
    championship: Championship,
) -> Optional[RankingSnapshot]:
    if championship.current_snapshot_version is None:
        return None
    result = await db.execute(
        select(RankingSnapshot).where(
            RankingSnapshot.championship_id == championship.id,
            RankingSnapshot.version == championship.current_snapshot_version,
        )
    )
    return result.scalar_one_or_none()


def _snapshot_meta(snapshot: RankingSnapshot) -> dict:
    meta = snapshot.to_dict()
    if feature_flags.FEATURE_SNAPSHOT_CHECKSUM:
        meta["integrity_valid"] = verify_snapshot(snapshot)
    return meta


def _window_start(today: date) -> date:
    return today - timedelta(days=settings.RECENT_ACTIVITY_DAYS - 1)


async def _recent_demerits(
    db: AsyncSession,
    championship_id: int,
    since: date,
    unit_id: Optional[int] = None,
) -> List[Demerit]:
    query = select(Demerit).where(
        Demerit.championship_id == championship_id,
        Demerit.voided_at.is_(None),
        Demerit.occurred_on >= since,
    )
    if unit_id is not None:
        query = query.where(Demerit.unit_id == unit_id)
    query = query.order_by(
        Demerit.occurred_on.desc(), Demerit.created_at.desc(), Demerit.id.desc()
    ).limit(settings.RECENT_DEMERITS_LIMIT)
    result = await db.execute(query)
    return list(result.scalars())


def campaign_days(championship: Championship, today: date) -> int:
    """Days elapsed in the championship window, counting the first day."""
    if today < championship.start_date:
        return 0
    last = min(today, championship.end_date)
    return (last - championship.start_date).days + 1


async def _daily_activity(
    db: AsyncSession,
    championship_id: int,
    since: date,
    today: date,
) -> List[dict]:
    days: Dict[date, dict] = {}
    cursor = since
    while cursor <= today:
        days[cursor] = {
            "date": cursor.isoformat(),
            "evaluations": 0,
            "demerits": 0,
            "points_gained": 0,
            "points_lost": 0,
        }
        cursor += timedelta(days=1)

    evaluations = await db.execute(
        select(Evaluation.evaluated_on, Evaluation.color).where(
            Evaluation.championship_id == championship_id,
            Evaluation.evaluated_on >= since,
            Evaluation.evaluated_on <= today,
        )
    )
    for evaluated_on, color in evaluations.all():
        bucket = days.get(evaluated_on)
        if bucket is None:
            continue
        bucket["evaluations"] += 1
        bucket["points_gained"] += EVALUATION_COLOR_POINTS.get(color, 0)

    demerits = await db.execute(
        select(Demerit.occurred_on, Demerit.points_delta).where(
            Demerit.championship_id == championship_id,
            Demerit.voided_at.is_(None),
            Demerit.occurred_on >= since,
            Demerit.occurred_on <= today,
        )
    )
    for occurred_on, points_delta in demerits.all():
        bucket = days.get(occurred_on)
        if bucket is None:
            continue
        bucket["demerits"] += 1
        bucket["points_lost"] += abs(points_delta)

    return list(days.values())


async def _class_status(db: AsyncSession, championship: Championship, unit_ids: List[int], today: date) -> List[dict]:
    goals = await goals_for_units(db, championship, unit_ids, today=today)
    summary = {
        tier.value: {
            "tier": tier.value,
            "units_total": len(unit_ids),
            "units_completed": 0,
            "achieved_total": 0,
            "target_total": 0,
        }
        for tier in ClassTier
    }
    for unit_goals in goals.values():
        for goal in unit_goals:
            row = summary[goal.tier]
            row["achieved_total"] += goal.achieved_count
            row["target_total"] += goal.target_count
            if goal.status == GOAL_COMPLETED:
                row["units_completed"] += 1
    return list(summary.values())


async def executive_view(
    db: AsyncSession,
    championship_id: int,
    caller: Caller,
    today: Optional[date] = None,
) -> dict:
    """
    Full ranking with breakdowns plus club-wide activity.

    Raises:
        NoActiveChampionshipError: championship missing or never published
    """
    caller.require_admin()
    today = today or date.today()

    championship = await db.get(Championship, championship_id)
    if championship is None:
        raise NoActiveChampionshipError(f"Championship {championship_id} not found")
    snapshot = await get_current_snapshot(db, championship)
    if snapshot is None:
        raise NoActiveChampionshipError(
            f"Championship {championship_id} has no published ranking"
        )

    ranking = [entry.to_dict() for entry in snapshot.entries]
    names = {entry.unit_id: entry.unit_name for entry in snapshot.entries}

    since = _window_start(today)
    recent = []
    for demerit in await _recent_demerits(db, championship_id, since):
        row = demerit.to_dict()
        row["unit_name"] = names.get(demerit.unit_id)
        recent.append(row)

    evaluation_count = await db.execute(
        select(func.count(Evaluation.id)).where(Evaluation.championship_id == championship_id)
    )
    demerit_count = await db.execute(
        select(func.count(Demerit.id)).where(
            Demerit.championship_id == championship_id,
            Demerit.voided_at.is_(None),
        )
    )

    summary = {
        "evaluation_count": evaluation_count.scalar_one(),
        "demerit_count": demerit_count.scalar_one(),
        "participating_units": snapshot.unit_count,
        "campaign_days": campaign_days(championship, today),
        "top_units": [
            {"rank": e["rank"], "unit_id": e["unit_id"], "unit_name": e["unit_name"], "total": e["total"]}
            for e in ranking[:settings.TOP_UNITS_LIMIT]
        ],
    }

    return {
        "championship": championship.to_dict(),
        "snapshot": _snapshot_meta(snapshot),
        "ranking": ranking,
        "recent_demerits": recent,
        "summary": summary,
        "daily_activity": await _daily_activity(db, championship_id, since, today),
        "class_status": await _class_status(db, championship, list(names), today),
    }


async def unit_view(
    db: AsyncSession,
    championship_id: int,
    unit_id: int,
    caller: Caller,
    today: Optional[date] = None,
) -> dict:
    """
    One unit's entry, rank, goals, its own recent demerits and today's
    points, demerit points and balance.

    A unit that joined after the last synchronization has no entry yet;
    that is reported as `entry: None`, not as an error.
    """
    caller.require_unit_access(unit_id)
    today = today or date.today()

    championship = await db.get(Championship, championship_id)
    if championship is None:
        raise NotFoundError("Championship", championship_id, code=ErrorCode.CHAMPIONSHIP_NOT_FOUND)
    unit = await db.get(Unit, unit_id)
    if unit is None:
        raise NotFoundError("Unit", unit_id, code=ErrorCode.UNIT_NOT_FOUND)
    snapshot = await get_current_snapshot(db, championship)
    if snapshot is None:
        raise NotFoundError("Ranking for championship", championship_id)

    entry = next((e for e in snapshot.entries if e.unit_id == unit_id), None)
    goals = await goals_for_units(db, championship, [unit_id], today=today)
    demerits = await _recent_demerits(db, championship_id, _window_start(today), unit_id=unit_id)
    todays_evaluations, todays_demerits = await _unit_records(db, championship_id, unit_id, today, today)

    return {
        "championship": championship.to_dict(),
        "snapshot": _snapshot_meta(snapshot),
        "unit": {"id": unit.id, "name": unit.name, "colors": unit.colors()},
        "entry": entry.to_dict() if entry else None,
        "rank": entry.rank if entry else None,
        "units_ranked": snapshot.unit_count,
        "goals": [g.to_dict() for g in goals.get(unit_id, [])],
        "recent_demerits": [d.to_dict() for d in demerits if d.unit_id == unit_id],
        "today": _day_totals(today, todays_evaluations, todays_demerits),
    }


# =============================================================================
# Counselor feeds
# =============================================================================
# Live reads of one unit's evaluations and demerits. They are not taken from
# the snapshot, so they may run ahead of the published ranking.

async def _unit_championship(
    db: AsyncSession,
    championship_id: int,
    unit_id: int,
    caller: Caller,
) -> Championship:
    caller.require_unit_access(unit_id)
    championship = await db.get(Championship, championship_id)
    if championship is None:
        raise NotFoundError("Championship", championship_id, code=ErrorCode.CHAMPIONSHIP_NOT_FOUND)
    if await db.get(Unit, unit_id) is None:
        raise NotFoundError("Unit", unit_id, code=ErrorCode.UNIT_NOT_FOUND)
    return championship


async def _unit_records(
    db: AsyncSession,
    championship_id: int,
    unit_id: int,
    since: date,
    until: date,
) -> Tuple[List[Evaluation], List[Demerit]]:
    evaluations = await db.execute(
        select(Evaluation).where(
            Evaluation.championship_id == championship_id,
            Evaluation.unit_id == unit_id,
            Evaluation.evaluated_on >= since,
            Evaluation.evaluated_on <= until,
        ).order_by(Evaluation.evaluated_on.desc(), Evaluation.created_at, Evaluation.id)
    )
    demerits = await db.execute(
        select(Demerit).where(
            Demerit.championship_id == championship_id,
            Demerit.unit_id == unit_id,
            Demerit.voided_at.is_(None),
            Demerit.occurred_on >= since,
            Demerit.occurred_on <= until,
        ).order_by(Demerit.occurred_on.desc(), Demerit.created_at, Demerit.id)
    )
    return list(evaluations.scalars()), list(demerits.scalars())


def _day_totals(day: date, evaluations: List[Evaluation], demerits: List[Demerit]) -> dict:
    gained = sum(e.points for e in evaluations)
    lost = sum(abs(d.points_delta) for d in demerits)
    return {
        "date": day.isoformat(),
        "points_gained": gained,
        "points_lost": lost,
        "balance": gained - lost,
    }


async def day_details(
    db: AsyncSession,
    championship_id: int,
    unit_id: int,
    caller: Caller,
    day: date,
) -> dict:
    """A unit's evaluations and demerits on one day, oldest first."""
    await _unit_championship(db, championship_id, unit_id, caller)
    evaluations, demerits = await _unit_records(db, championship_id, unit_id, day, day)
    return {
        **_day_totals(day, evaluations, demerits),
        "evaluations": [e.to_dict() for e in evaluations],
        "demerits": [d.to_dict() for d in demerits],
    }


async def history(
    db: AsyncSession,
    championship_id: int,
    unit_id: int,
    caller: Caller,
    today: Optional[date] = None,
) -> List[dict]:
    """
    Every evaluation and demerit of the last RECENT_ACTIVITY_DAYS days,
    newest day first. Each item carries the net total of its day.
    """
    await _unit_championship(db, championship_id, unit_id, caller)
    today = today or date.today()
    evaluations, demerits = await _unit_records(db, championship_id, unit_id, _window_start(today), today)

    day_totals: Dict[date, int] = defaultdict(int)
    for evaluation in evaluations:
        day_totals[evaluation.evaluated_on] += evaluation.points
    for demerit in demerits:
        day_totals[demerit.occurred_on] += demerit.points_delta

    items = [
        {
            "date": e.evaluated_on.isoformat(),
            "kind": "evaluation",
            "area": e.area,
            "type": e.evaluation_type,
            "color": e.color,
            "points_gained": e.points,
            "points_lost": 0,
            "day_total": day_totals[e.evaluated_on],
        }
        for e in evaluations
    ]
    items.extend(
        {
            "date": d.occurred_on.isoformat(),
            "kind": "demerit",
            "type": d.type,
            "level": d.level,
            "points_gained": 0,
            "points_lost": abs(d.points_delta),
            "day_total": day_totals[d.occurred_on],
        }
        for d in demerits
    )
    # stable: evaluations stay ahead of demerits within a day
    items.sort(key=lambda item: item["date"], reverse=True)
    return items


def _months(start: date, end: date) -> List[Tuple[int, int]]:
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


async def monthly_evolution(
    db: AsyncSession,
    championship_id: int,
    unit_id: int,
    caller: Caller,
) -> List[dict]:
    """
    Net evaluation and demerit points per month of the championship window,
    with a running total. Months without activity report zero.
    """
    championship = await _unit_championship(db, championship_id, unit_id, caller)
    evaluations, demerits = await _unit_records(
        db, championship_id, unit_id, championship.start_date, championship.end_date
    )

    per_month: Dict[Tuple[int, int], int] = defaultdict(int)
    for evaluation in evaluations:
        per_month[(evaluation.evaluated_on.year, evaluation.evaluated_on.month)] += evaluation.points
    for demerit in demerits:
        per_month[(demerit.occurred_on.year, demerit.occurred_on.month)] += demerit.points_delta

    evolution = []
    cumulative = 0
    for year, month in _months(championship.start_date, championship.end_date):
        points = per_month[(year, month)]
        cumulative += points
        evolution.append({
            "month": f"{year:04d}-{month:02d}",
            "points": points,
            "cumulative": cumulative,
        })
    return evolution
