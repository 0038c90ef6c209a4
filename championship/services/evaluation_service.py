"""
championship/services/evaluation_service.py
Evaluation administration: list, record, delete.

An evaluation is worth the points of its color (green 50, yellow 30,
red 10). Like demerits, recording or deleting one never recomputes the
ranking; the next synchronization picks the change up.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from championship.errors import (
    ChampionshipClosedError, ErrorCode, InvalidStateError, NotFoundError, ValidationError,
    require_fields,
)
from championship.orm.source_records import EVALUATION_COLOR_POINTS, Evaluation
from championship.orm.unit import Unit
from championship.security.capabilities import Caller
from championship.services.championship_service import ChampionshipService
from championship.services.demerit_service import DESCRIPTION_MAX_LENGTH

logger = logging.getLogger(__name__)

AREA_MAX_LENGTH = 40
TYPE_MAX_LENGTH = 60


async def list_evaluations(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: Optional[int],
    evaluated_on: Optional[date],
) -> List[Evaluation]:
    """
    Evaluations of one unit on one day, oldest first.

    Raises:
        ValidationError: unit_id or date missing
    """
    caller.require_admin()
    require_fields(unit_id=unit_id, date=evaluated_on)
    await ChampionshipService.get(db, championship_id)

    result = await db.execute(
        select(Evaluation).where(
            Evaluation.championship_id == championship_id,
            Evaluation.unit_id == unit_id,
            Evaluation.evaluated_on == evaluated_on,
        ).order_by(Evaluation.created_at, Evaluation.id)
    )
    return list(result.scalars())


async def create_evaluation(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: Optional[int],
    evaluated_on: Optional[date],
    area: Optional[str],
    evaluation_type: Optional[str],
    color: Optional[str],
    description: Optional[str] = None,
    today: Optional[date] = None,
) -> Evaluation:
    """
    Record an evaluation.

    VALIDATION:
    1. unit_id, date, area, type and color are present
    2. the championship exists and is active
    3. the unit exists and is active
    4. the color is green, yellow or red
    5. the date is not in the future and lies inside the championship window

    Raises:
        ValidationError, NotFoundError, ChampionshipClosedError, InvalidStateError
    """
    caller.require_admin()
    area = area.strip() if area else None
    evaluation_type = evaluation_type.strip() if evaluation_type else None
    require_fields(unit_id=unit_id, date=evaluated_on, area=area, type=evaluation_type, color=color)

    championship = await ChampionshipService.get(db, championship_id)
    if championship.is_closed:
        logger.warning(f"Evaluation rejected: championship {championship_id} is closed")
        raise ChampionshipClosedError(championship_id)
    if not championship.is_active:
        raise InvalidStateError(
            f"Championship {championship_id} is not active",
            details={"status": championship.status},
        )

    fields = {}
    unit = await db.get(Unit, unit_id)
    if unit is None:
        raise NotFoundError("Unit", unit_id, code=ErrorCode.UNIT_NOT_FOUND)
    if not unit.is_active:
        fields["unit_id"] = "Unit is not active"

    color = color.strip().lower()
    if color not in EVALUATION_COLOR_POINTS:
        fields["color"] = f"Unknown color '{color}'"
    if len(area) > AREA_MAX_LENGTH:
        fields["area"] = f"Area must be at most {AREA_MAX_LENGTH} characters"
    if len(evaluation_type) > TYPE_MAX_LENGTH:
        fields["type"] = f"Type must be at most {TYPE_MAX_LENGTH} characters"

    description = description.strip() if description else None
    if description and len(description) > DESCRIPTION_MAX_LENGTH:
        fields["description"] = f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"

    today = today or date.today()
    if evaluated_on > today:
        fields["date"] = "Date cannot be in the future"
    elif not championship.contains(evaluated_on):
        fields["date"] = "Date is outside the championship period"

    if fields:
        raise ValidationError("Invalid evaluation", fields=fields)

    evaluation = Evaluation(
        championship_id=championship_id,
        unit_id=unit_id,
        evaluated_on=evaluated_on,
        area=area,
        evaluation_type=evaluation_type,
        color=color,
        description=description,
        created_by=caller.user_id,
        created_at=datetime.utcnow(),
    )
    db.add(evaluation)
    await db.commit()
    await db.refresh(evaluation)

    logger.info(
        f"Evaluation recorded: id={evaluation.id}, championship={championship_id}, unit={unit_id}, "
        f"color={color}, points={evaluation.points}"
    )
    return evaluation


async def delete_evaluation(db: AsyncSession, caller: Caller, evaluation_id: int) -> None:
    """
    Delete an evaluation. It stops counting at the next synchronization.

    Raises:
        NotFoundError, ChampionshipClosedError
    """
    caller.require_admin()
    evaluation = await db.get(Evaluation, evaluation_id)
    if evaluation is None:
        raise NotFoundError("Evaluation", evaluation_id, code=ErrorCode.EVALUATION_NOT_FOUND)

    championship = await ChampionshipService.get(db, evaluation.championship_id)
    if championship.is_closed:
        raise ChampionshipClosedError(championship.id)

    unit_id = evaluation.unit_id
    await db.delete(evaluation)
    await db.commit()

    logger.warning(
        f"Evaluation deleted: id={evaluation_id}, championship={championship.id}, "
        f"unit={unit_id}, by={caller.user_id}"
    )
