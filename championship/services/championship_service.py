"""
championship/services/championship_service.py
Championship lifecycle: create, activate, close.

CLOSED is terminal. At most one championship is ACTIVE; the rule is
checked here and backed by a partial unique index.
"""
import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from championship.errors import (
    ChampionshipClosedError, ErrorCode, InvalidStateError, NoActiveChampionshipError,
    NotFoundError, ValidationError,
)
from championship.orm.championship import Championship, ChampionshipStatus
from championship.security.capabilities import Caller

logger = logging.getLogger(__name__)


class ChampionshipService:
    """Administrative lifecycle of championships."""

    VALID_TRANSITIONS = {
        ChampionshipStatus.DRAFT: [ChampionshipStatus.ACTIVE, ChampionshipStatus.CLOSED],
        ChampionshipStatus.ACTIVE: [ChampionshipStatus.CLOSED],
        ChampionshipStatus.CLOSED: [],  # Terminal state
    }

    @staticmethod
    def _is_valid_transition(current: ChampionshipStatus, new: ChampionshipStatus) -> bool:
        return new in ChampionshipService.VALID_TRANSITIONS.get(current, [])

    @staticmethod
    async def get(db: AsyncSession, championship_id: int) -> Championship:
        result = await db.execute(select(Championship).where(Championship.id == championship_id))
        championship = result.scalar_one_or_none()
        if championship is None:
            raise NotFoundError("Championship", championship_id, code=ErrorCode.CHAMPIONSHIP_NOT_FOUND)
        return championship

    @staticmethod
    async def find_active(db: AsyncSession) -> Optional[Championship]:
        result = await db.execute(
            select(Championship).where(Championship.status == ChampionshipStatus.ACTIVE.value)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_active(db: AsyncSession) -> Championship:
        """
        The active championship.

        Raises:
            NoActiveChampionshipError: none is active
        """
        championship = await ChampionshipService.find_active(db)
        if championship is None:
            raise NoActiveChampionshipError()
        return championship

    @staticmethod
    async def create(
        db: AsyncSession,
        caller: Caller,
        name: str,
        year: int,
        start_date: date,
        end_date: date,
        description: Optional[str] = None,
    ) -> Championship:
        caller.require_admin()
        fields = {}
        if not name or not name.strip():
            fields["name"] = "This field is required"
        if end_date < start_date:
            fields["end_date"] = "end_date must not be before start_date"
        if not (start_date.year <= year <= end_date.year):
            fields["year"] = "year must fall inside the championship window"
        if fields:
            raise ValidationError("Invalid championship", fields=fields)

        championship = Championship(
            name=name.strip(),
            year=year,
            description=description,
            start_date=start_date,
            end_date=end_date,
            status=ChampionshipStatus.DRAFT.value,
        )
        db.add(championship)
        await db.commit()
        await db.refresh(championship)

        logger.info(f"Championship created: id={championship.id}, name={championship.name!r}, year={year}")
        return championship

    @staticmethod
    async def activate(db: AsyncSession, caller: Caller, championship_id: int) -> Championship:
        """
        DRAFT -> ACTIVE.

        Raises:
            NotFoundError, ChampionshipClosedError,
            InvalidStateError: not a draft, or another championship is active
        """
        caller.require_admin()
        championship = await ChampionshipService.get(db, championship_id)
        current = ChampionshipStatus(championship.status)
        if current == ChampionshipStatus.CLOSED:
            raise ChampionshipClosedError(championship_id)
        if not ChampionshipService._is_valid_transition(current, ChampionshipStatus.ACTIVE):
            raise InvalidStateError(
                f"Cannot activate championship {championship_id} from status {current.value}"
            )

        other = await ChampionshipService.find_active(db)
        if other is not None:
            raise InvalidStateError(
                f"Championship {other.id} is already active",
                details={"active_championship_id": other.id},
            )

        championship.status = ChampionshipStatus.ACTIVE.value
        championship.activated_at = datetime.utcnow()
        try:
            await db.commit()
        except IntegrityError:
            # another activation committed between the check and this write
            await db.rollback()
            logger.warning(f"Concurrent activation rejected for championship {championship_id}")
            raise InvalidStateError("Another championship is already active")
        await db.refresh(championship)

        logger.info(f"Championship activated: id={championship_id}")
        return championship

    @staticmethod
    async def close(db: AsyncSession, caller: Caller, championship_id: int) -> Championship:
        """
        DRAFT/ACTIVE -> CLOSED. Terminal: later syncs and demerits are rejected.
        """
        caller.require_admin()
        championship = await ChampionshipService.get(db, championship_id)
        current = ChampionshipStatus(championship.status)
        if not ChampionshipService._is_valid_transition(current, ChampionshipStatus.CLOSED):
            raise ChampionshipClosedError(championship_id)

        championship.status = ChampionshipStatus.CLOSED.value
        championship.closed_at = datetime.utcnow()
        await db.commit()
        await db.refresh(championship)

        logger.info(
            f"Championship closed: id={championship_id}, "
            f"final_version={championship.current_snapshot_version}"
        )
        return championship
