"""
Championship lifecycle API Routes
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from championship.database import get_db
from championship.routes.ranking import get_synchronizer
from championship.schemas.championship import ChampionshipCreate, ChampionshipResponse
from championship.security.capabilities import Caller, get_caller
from championship.services.championship_service import ChampionshipService
from championship.services.ranking_synchronizer import RankingSynchronizer

router = APIRouter(prefix="/api/championships", tags=["Championships"])


@router.get("/active")
async def get_active_championship(
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    """The active championship, or 404 NO_ACTIVE_CHAMPIONSHIP."""
    championship = await ChampionshipService.get_active(db)
    return {"success": True, "championship": championship.to_dict()}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_championship(
    payload: ChampionshipCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    championship = await ChampionshipService.create(
        db,
        caller,
        name=payload.name,
        year=payload.year,
        start_date=payload.start_date,
        end_date=payload.end_date,
        description=payload.description,
    )
    return {
        "success": True,
        "championship": ChampionshipResponse.model_validate(championship).model_dump(mode="json"),
    }


@router.post("/{championship_id}/activate")
async def activate_championship(
    championship_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    championship = await ChampionshipService.activate(db, caller, championship_id)
    return {"success": True, "championship": championship.to_dict()}


@router.post("/{championship_id}/close")
async def close_championship(
    championship_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    championship = await ChampionshipService.close(db, caller, championship_id)
    return {"success": True, "championship": championship.to_dict()}


@router.post("/{championship_id}/initialize", status_code=status.HTTP_201_CREATED)
async def initialize_championship(
    championship_id: int,
    caller: Caller = Depends(get_caller),
    synchronizer: RankingSynchronizer = Depends(get_synchronizer),
) -> Dict[str, Any]:
    """Seed snapshot version 1. Rejected with 409 if any snapshot exists."""
    result = await synchronizer.initialize(championship_id, caller)
    return {"success": True, "snapshot": result.to_dict()}
