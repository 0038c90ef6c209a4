"""
championship/services/demerit_service.py
Demerit administration: list, record, void.

Demerits are append-only. Voiding marks the row instead of deleting it;
the next synchronization leaves voided demerits out of the score. No
operation here recomputes the ranking.
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
from championship.orm.championship import Championship
from championship.orm.demerit import Demerit
from championship.orm.unit import Unit
from championship.security.capabilities import Caller
from championship.services.score_catalog import get_demerit_type

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_LENGTH = 500


async def _get_championship(db: AsyncSession, championship_id: int) -> Championship:
    championship = await db.get(Championship, championship_id)
    if championship is None:
        raise NotFoundError("Championship", championship_id, code=ErrorCode.CHAMPIONSHIP_NOT_FOUND)
    return championship


async def list_demerits(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: Optional[int],
    occurred_on: Optional[date],
    include_voided: bool = False,
) -> List[Demerit]:
    """
    Demerits of one unit on one day, oldest first.

    Raises:
        ValidationError: unit_id or date missing
    """
    caller.require_admin()
    require_fields(unit_id=unit_id, date=occurred_on)
    await _get_championship(db, championship_id)

    query = select(Demerit).where(
        Demerit.championship_id == championship_id,
        Demerit.unit_id == unit_id,
        Demerit.occurred_on == occurred_on,
    )
    if not include_voided:
        query = query.where(Demerit.voided_at.is_(None))
    result = await db.execute(query.order_by(Demerit.created_at, Demerit.id))
    return list(result.scalars())


async def create_demerit(
    db: AsyncSession,
    caller: Caller,
    championship_id: int,
    unit_id: Optional[int],
    occurred_on: Optional[date],
    demerit_type: Optional[str],
    description: Optional[str] = None,
    today: Optional[date] = None,
) -> Demerit:
    """
    Record a demerit. Points and level come from the demerit type table.

    VALIDATION:
    1. unit_id, date and type are present
    2. the championship exists and is active
    3. the unit exists and is active
    4. the type is known; D3/D4 carry a description
    5. the date is not in the future and lies inside the championship window

    Raises:
        ValidationError, NotFoundError, ChampionshipClosedError, InvalidStateError
    """
    caller.require_admin()
    require_fields(unit_id=unit_id, date=occurred_on, type=demerit_type)

    championship = await _get_championship(db, championship_id)
    if championship.is_closed:
        logger.warning(f"Demerit rejected: championship {championship_id} is closed")
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

    kind = get_demerit_type(demerit_type)
    if kind is None:
        fields["type"] = f"Unknown demerit type '{demerit_type}'"

    description = description.strip() if description else None
    if kind is not None and kind.requires_description and not description:
        fields["description"] = f"A description is required for {kind.level} demerits"
    if description and len(description) > DESCRIPTION_MAX_LENGTH:
        fields["description"] = f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters"

    today = today or date.today()
    if occurred_on > today:
        fields["date"] = "Date cannot be in the future"
    elif not championship.contains(occurred_on):
        fields["date"] = "Date is outside the championship period"

    if fields:
        raise ValidationError("Invalid demerit", fields=fields)

    demerit = Demerit(
        championship_id=championship_id,
        unit_id=unit_id,
        occurred_on=occurred_on,
        type=kind.key,
        level=kind.level,
        points_delta=kind.points,
        description=description,
        created_by=caller.user_id,
        created_at=datetime.utcnow(),
    )
    db.add(demerit)
    await db.commit()
    await db.refresh(demerit)

    logger.info(
        f"Demerit recorded: id={demerit.id}, championship={championship_id}, unit={unit_id}, "
        f"type={kind.key}, points={kind.points}"
    )
    return demerit


async def void_demerit(
    db: AsyncSession,
    caller: Caller,
    demerit_id: int,
    reason: Optional[str] = None,
) -> Demerit:
    """
    Soft-void a demerit. Voiding twice is a no-op.

    Raises:
        NotFoundError, ChampionshipClosedError
    """
    caller.require_admin()
    demerit = await db.get(Demerit, demerit_id)
    if demerit is None:
        raise NotFoundError("Demerit", demerit_id, code=ErrorCode.DEMERIT_NOT_FOUND)

    championship = await _get_championship(db, demerit.championship_id)
    if championship.is_closed:
        raise ChampionshipClosedError(championship.id)

    if demerit.is_voided:
        return demerit

    demerit.voided_at = datetime.utcnow()
    demerit.voided_by = caller.user_id
    demerit.void_reason = reason
    await db.commit()
    await db.refresh(demerit)

    logger.warning(
        f"Demerit voided: id={demerit_id}, championship={demerit.championship_id}, "
        f"unit={demerit.unit_id}, by={caller.user_id}"
    )
    return demerit
