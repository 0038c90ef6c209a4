"""
championship/services/class_progress_service.py
Class progress administration and live goal computation.
"""
import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from championship.errors import (
    ChampionshipClosedError, ErrorCode, NoActiveChampionshipError, NotFoundError,
    ValidationError,
)
from championship.orm.championship import Championship, ChampionshipStatus
from championship.orm.class_progress import ClassProgress, ClassTier
from championship.orm.unit import Unit
from championship.security.capabilities import Caller
from championship.services.goal_tracker import DEFAULT_TARGETS, GoalProgress, goals_for_units

logger = logging.getLogger(__name__)

COUNT_FIELDS = ("target_count", "achieved_count")


async def _load(db: AsyncSession, championship_id: int, unit_id: int):
    championship = await db.get(Championship, championship_id)
    if championship is None:
        raise NotFoundError("Championship", championship_id, code=ErrorCode.CHAMPIONSHIP_NOT_FOUND)
    unit = await db.get(Unit, unit_id)
    if unit is None:
        raise NotFoundError("Unit", unit_id, code=ErrorCode.UNIT_NOT_FOUND)
    return championship, unit


async def _rows(db: AsyncSession, championship_id: int, unit_id: int) -> Dict[str, ClassProgress]:
    result = await db.execute(
        select(ClassProgress).where(
            ClassProgress.championship_id == championship_id,
            ClassProgress.unit_id == unit_id,
        )
    )
    return {row.tier: row for row in result.scalars()}


async def get_class_progress(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: int,
) -> List[dict]:
    """Stored progress per tier; tiers never stored show their default target."""
    caller.require_unit_access(unit_id)
    await _load(db, championship_id, unit_id)
    rows = await _rows(db, championship_id, unit_id)

    progress = []
    for tier in ClassTier:
        row = rows.get(tier.value)
        if row is not None:
            progress.append(row.to_dict())
        else:
            progress.append({
                "tier": tier.value,
                "target_count": DEFAULT_TARGETS[tier],
                "achieved_count": 0,
                "manual_override": False,
                "completed_on": None,
                "updated_at": None,
            })
    return progress


def _validate_updates(updates: Dict[str, Dict[str, Optional[int]]]) -> None:
    fields = {}
    if not updates:
        fields["tiers"] = "At least one tier is required"
    known = {tier.value for tier in ClassTier}
    for tier, counts in (updates or {}).items():
        if tier not in known:
            fields[tier] = f"Unknown tier '{tier}'"
            continue
        for name in COUNT_FIELDS:
            value = counts.get(name)
            if value is not None and value < 0:
                fields[f"{tier}.{name}"] = "Must not be negative"
    if fields:
        raise ValidationError("Invalid class progress", fields=fields)


async def update_class_progress(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: int,
    updates: Dict[str, Dict[str, Optional[int]]],
    today: Optional[date] = None,
) -> List[dict]:
    """
    Administrator override of per-tier counts.

    `updates` maps tier -> {"target_count": n, "achieved_count": n}; a
    missing count keeps its stored value. Every touched row is flagged as
    a manual override, which stops badge deliveries from driving the
    specialties tier.

    Raises:
        ValidationError: unknown tier or negative count
    """
    caller.require_admin()
    _validate_updates(updates)
    championship, _ = await _load(db, championship_id, unit_id)
    if championship.is_closed:
        raise ChampionshipClosedError(championship_id)

    today = today or date.today()
    rows = await _rows(db, championship_id, unit_id)
    for tier_value, counts in updates.items():
        tier = ClassTier(tier_value)
        row = rows.get(tier.value)
        if row is None:
            row = ClassProgress(
                championship_id=championship_id,
                unit_id=unit_id,
                tier=tier.value,
                target_count=DEFAULT_TARGETS[tier],
                achieved_count=0,
            )
            db.add(row)
            rows[tier.value] = row

        if counts.get("target_count") is not None:
            row.target_count = counts["target_count"]
        if counts.get("achieved_count") is not None:
            row.achieved_count = counts["achieved_count"]
        row.manual_override = True
        row.updated_by = caller.user_id
        row.updated_at = datetime.utcnow()
        if row.target_count > 0 and row.achieved_count >= row.target_count:
            row.completed_on = row.completed_on or today
        else:
            row.completed_on = None

    await db.commit()
    logger.info(
        f"Class progress updated: championship={championship_id}, unit={unit_id}, "
        f"tiers={sorted(updates)}, by={caller.user_id}"
    )
    return await get_class_progress(db, caller, championship_id, unit_id)


async def get_goals(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: int,
    today: Optional[date] = None,
) -> List[GoalProgress]:
    """
    Live Goal Tracker output for one unit.

    Raises:
        NoActiveChampionshipError: championship missing or still a draft
        NotFoundError: unknown unit
    """
    caller.require_unit_access(unit_id)
    championship = await db.get(Championship, championship_id)
    if championship is None or championship.status == ChampionshipStatus.DRAFT.value:
        raise NoActiveChampionshipError()
    unit = await db.get(Unit, unit_id)
    if unit is None:
        raise NotFoundError("Unit", unit_id, code=ErrorCode.UNIT_NOT_FOUND)

    goals = await goals_for_units(db, championship, [unit_id], today=today)
    return goals[unit_id]
