"""
championship/services/goal_tracker.py
Goal Tracker: per-unit progress toward class and specialty targets.

    percent   = achieved / target * 100, capped at 100 (0 when target is 0)
    remaining = max(0, target - achieved)
    status    = completed | overdue | in_progress

Goals are reported next to the score with a display-only reward value;
they never change the ranking total.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from championship.config.settings import settings
from championship.orm.championship import Championship
from championship.orm.class_progress import ClassProgress, ClassTier
from championship.orm.source_records import BadgeDelivery

logger = logging.getLogger(__name__)

GOAL_COMPLETED = "completed"
GOAL_OVERDUE = "overdue"
GOAL_IN_PROGRESS = "in_progress"

DEFAULT_TARGETS: Dict[ClassTier, int] = {
    ClassTier.REGULAR: 1,
    ClassTier.ADVANCED: 1,
    ClassTier.BIBLICAL: 1,
    ClassTier.SPECIALTIES: settings.GOAL_TARGET_SPECIALTIES,
}

# Display-only reward values; never added to the ranking total
REWARD_POINTS: Dict[ClassTier, int] = {
    ClassTier.REGULAR: 200,
    ClassTier.ADVANCED: 300,
    ClassTier.BIBLICAL: 200,
}
POINTS_PER_SPECIALTY = 100


def reward_points(tier: str, achieved_count: int) -> int:
    """Points a goal is worth. Specialties pay per badge up to the default target."""
    if tier == ClassTier.SPECIALTIES.value:
        return min(max(achieved_count, 0), settings.GOAL_TARGET_SPECIALTIES) * POINTS_PER_SPECIALTY
    return REWARD_POINTS.get(tier, 0)


def deadline_for(tier: ClassTier, championship: Optional[Championship] = None) -> Optional[date]:
    if tier == ClassTier.REGULAR:
        return settings.GOAL_DEADLINE_REGULAR
    if tier == ClassTier.ADVANCED:
        return settings.GOAL_DEADLINE_ADVANCED
    if championship is not None:
        return championship.end_date
    return None


@dataclass(frozen=True)
class GoalProgress:
    tier: str
    target_count: int
    achieved_count: int
    percent: float
    remaining: int
    status: str
    deadline: Optional[date] = None
    manual_override: bool = False
    points: int = 0

    def to_dict(self):
        return {
            "tier": self.tier,
            "target_count": self.target_count,
            "achieved_count": self.achieved_count,
            "percent": self.percent,
            "remaining": self.remaining,
            "status": self.status,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "manual_override": self.manual_override,
            "points": self.points,
        }


def compute_goal(
    tier: str,
    target_count: int,
    achieved_count: int,
    deadline: Optional[date] = None,
    today: Optional[date] = None,
    manual_override: bool = False,
) -> GoalProgress:
    if target_count > 0:
        percent = min(100.0, round(achieved_count / target_count * 100, 2))
    else:
        percent = 0.0
    remaining = max(0, target_count - achieved_count)

    today = today or date.today()
    if target_count > 0 and achieved_count >= target_count:
        status = GOAL_COMPLETED
    elif deadline is not None and today > deadline:
        status = GOAL_OVERDUE
    else:
        status = GOAL_IN_PROGRESS

    return GoalProgress(
        tier=tier,
        target_count=target_count,
        achieved_count=achieved_count,
        percent=percent,
        remaining=remaining,
        status=status,
        deadline=deadline,
        manual_override=manual_override,
        points=reward_points(tier, achieved_count),
    )


async def badge_counts(
    db: AsyncSession,
    championship: Championship,
    unit_ids: Iterable[int],
) -> Dict[int, int]:
    """Badge deliveries per unit inside the championship window."""
    unit_ids = list(unit_ids)
    if not unit_ids:
        return {}
    result = await db.execute(
        select(BadgeDelivery.unit_id, func.count(BadgeDelivery.id))
        .where(
            BadgeDelivery.unit_id.in_(unit_ids),
            BadgeDelivery.delivered_on >= championship.start_date,
            BadgeDelivery.delivered_on <= championship.end_date,
        )
        .group_by(BadgeDelivery.unit_id)
    )
    return {unit_id: count for unit_id, count in result.all()}


async def goals_for_units(
    db: AsyncSession,
    championship: Championship,
    unit_ids: Iterable[int],
    today: Optional[date] = None,
) -> Dict[int, List[GoalProgress]]:
    """
    Goal progress for every tier of every unit.

    Tiers without a ClassProgress row fall back to the default target.
    The specialties tier counts badge deliveries unless an administrator
    has overridden the row.
    """
    unit_ids = list(unit_ids)
    if not unit_ids:
        return {}

    result = await db.execute(
        select(ClassProgress).where(
            ClassProgress.championship_id == championship.id,
            ClassProgress.unit_id.in_(unit_ids),
        )
    )
    rows: Dict[int, Dict[str, ClassProgress]] = defaultdict(dict)
    for row in result.scalars():
        rows[row.unit_id][row.tier] = row

    badges = await badge_counts(db, championship, unit_ids)

    goals: Dict[int, List[GoalProgress]] = {}
    for unit_id in unit_ids:
        unit_goals = []
        for tier in ClassTier:
            row = rows[unit_id].get(tier.value)
            target = row.target_count if row else DEFAULT_TARGETS[tier]
            achieved = row.achieved_count if row else 0
            override = bool(row and row.manual_override)
            if tier == ClassTier.SPECIALTIES and not override:
                achieved = badges.get(unit_id, 0)
            unit_goals.append(compute_goal(
                tier.value,
                target,
                achieved,
                deadline=deadline_for(tier, championship),
                today=today,
                manual_override=override,
            ))
        goals[unit_id] = unit_goals
    return goals
