"""
Demerit API Routes
"""
import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from championship.database import get_db
from championship.schemas.demerit import DemeritCreate
from championship.security.capabilities import Caller, get_caller
from championship.services import demerit_service
from championship.services.score_catalog import DEMERIT_TYPES

router = APIRouter(tags=["Demerits"])


@router.get("/api/demerit-types")
async def list_demerit_types(caller: Caller = Depends(get_caller)) -> Dict[str, Any]:
    return {
        "success": True,
        "types": [
            {
                "key": t.key,
                "label": t.label,
                "level": t.level,
                "points": t.points,
                "requires_description": t.requires_description,
            }
            for t in DEMERIT_TYPES.values()
        ],
    }


@router.get("/api/championships/{championship_id}/demerits")
async def list_demerits(
    championship_id: int,
    unit_id: Optional[int] = Query(None),
    date: Optional[datetime.date] = Query(None),
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    """
    Demerits of one unit on one day.

    Query params:
    - unit_id: required
    - date: required (YYYY-MM-DD)
    """
    demerits = await demerit_service.list_demerits(db, caller, championship_id, unit_id, date)
    return {"success": True, "demerits": [d.to_dict() for d in demerits]}


@router.post("/api/championships/{championship_id}/demerits", status_code=status.HTTP_201_CREATED)
async def create_demerit(
    championship_id: int,
    payload: DemeritCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    demerit = await demerit_service.create_demerit(
        db,
        caller,
        championship_id,
        unit_id=payload.unit_id,
        occurred_on=payload.date,
        demerit_type=payload.type,
        description=payload.description,
    )
    return {"success": True, "demerit": demerit.to_dict()}


@router.delete("/api/demerits/{demerit_id}")
async def delete_demerit(
    demerit_id: int,
    reason: Optional[str] = Query(None, max_length=500),
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    """Void a demerit. It stops counting at the next synchronization."""
    demerit = await demerit_service.void_demerit(db, caller, demerit_id, reason=reason)
    return {"success": True, "demerit": demerit.to_dict()}
