"""
Dashboard API Routes

Read-only views served from the current ranking snapshot. With
FEATURE_LAZY_SYNC_ON_READ enabled, the first read of an active
championship that was never published triggers one synchronization.
"""
import datetime
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from championship.config.settings import feature_flags
from championship.database import get_db
from championship.errors import AlreadyInitializedError, SyncInProgressError
from championship.orm.championship import Championship, ChampionshipStatus
from championship.routes.ranking import get_synchronizer
from championship.security.capabilities import Caller, admin_caller, get_caller
from championship.services import dashboard_projector
from championship.services.class_progress_service import get_goals
from championship.services.ranking_synchronizer import RankingSynchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/championships", tags=["Dashboards"])


async def ensure_published(
    db: AsyncSession,
    synchronizer: RankingSynchronizer,
    championship_id: int,
) -> None:
    """Publish a first ranking for an active, never-synchronized championship."""
    if not feature_flags.FEATURE_LAZY_SYNC_ON_READ:
        return

    result = await db.execute(
        select(Championship.status, Championship.current_snapshot_version)
        .where(Championship.id == championship_id)
    )
    row = result.one_or_none()
    if row is None or row.current_snapshot_version is not None:
        return
    if row.status != ChampionshipStatus.ACTIVE.value:
        return

    # Runs on behalf of the engine, not the reader
    system = admin_caller()
    logger.info(f"Lazy synchronization on first read of championship {championship_id}")
    try:
        await synchronizer.initialize(championship_id, system)
    except AlreadyInitializedError:
        pass
    try:
        await synchronizer.synchronize(championship_id, system)
    except SyncInProgressError:
        logger.info(f"Lazy synchronization skipped: already running for championship {championship_id}")
    db.expire_all()


@router.get("/{championship_id}/dashboard")
async def get_executive_dashboard(
    championship_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
    synchronizer: RankingSynchronizer = Depends(get_synchronizer),
) -> Dict[str, Any]:
    """Full ranking with breakdowns, recent demerits, activity and class summary."""
    caller.require_admin()
    await ensure_published(db, synchronizer, championship_id)
    view = await dashboard_projector.executive_view(db, championship_id, caller)
    return {"success": True, **view}


@router.get("/{championship_id}/units/{unit_id}/dashboard")
async def get_unit_dashboard(
    championship_id: int,
    unit_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
    synchronizer: RankingSynchronizer = Depends(get_synchronizer),
) -> Dict[str, Any]:
    """A counselor's view of one unit. Never contains other units' demerits."""
    caller.require_unit_access(unit_id)
    await ensure_published(db, synchronizer, championship_id)
    view = await dashboard_projector.unit_view(db, championship_id, unit_id, caller)
    return {"success": True, **view}


@router.get("/{championship_id}/units/{unit_id}/goals")
async def get_unit_goals(
    championship_id: int,
    unit_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    goals = await get_goals(db, caller, championship_id, unit_id)
    return {"success": True, "unit_id": unit_id, "goals": [g.to_dict() for g in goals]}


@router.get("/{championship_id}/units/{unit_id}/days/{day}")
async def get_unit_day(
    championship_id: int,
    unit_id: int,
    day: datetime.date,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    """One day's evaluations and demerits for a unit."""
    details = await dashboard_projector.day_details(db, championship_id, unit_id, caller, day)
    return {"success": True, "unit_id": unit_id, **details}


@router.get("/{championship_id}/units/{unit_id}/history")
async def get_unit_history(
    championship_id: int,
    unit_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    items = await dashboard_projector.history(db, championship_id, unit_id, caller)
    return {"success": True, "unit_id": unit_id, "items": items}


@router.get("/{championship_id}/units/{unit_id}/evolution")
async def get_unit_evolution(
    championship_id: int,
    unit_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    """Month-by-month points with a running total."""
    months = await dashboard_projector.monthly_evolution(db, championship_id, unit_id, caller)
    return {"success": True, "unit_id": unit_id, "months": months}
