"""
Class progress API Routes
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from championship.database import get_db
from championship.schemas.class_progress import ClassProgressUpdate
from championship.security.capabilities import Caller, get_caller
from championship.services import class_progress_service

router = APIRouter(prefix="/api/championships", tags=["Class Progress"])


@router.get("/{championship_id}/units/{unit_id}/classes")
async def get_class_progress(
    championship_id: int,
    unit_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    progress = await class_progress_service.get_class_progress(db, caller, championship_id, unit_id)
    return {"success": True, "unit_id": unit_id, "classes": progress}


@router.put("/{championship_id}/units/{unit_id}/classes")
async def update_class_progress(
    championship_id: int,
    unit_id: int,
    payload: ClassProgressUpdate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    progress = await class_progress_service.update_class_progress(
        db, caller, championship_id, unit_id, payload.as_updates()
    )
    return {"success": True, "unit_id": unit_id, "classes": progress}
