"""
Evaluation API Routes
"""
import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from championship.database import get_db
from championship.orm.source_records import EVALUATION_COLOR_POINTS
from championship.schemas.evaluation import EvaluationCreate
from championship.security.capabilities import Caller, get_caller
from championship.services import evaluation_service

router = APIRouter(tags=["Evaluations"])


@router.get("/api/evaluation-colors")
async def list_evaluation_colors(caller: Caller = Depends(get_caller)) -> Dict[str, Any]:
    return {
        "success": True,
        "colors": [{"color": color, "points": points} for color, points in EVALUATION_COLOR_POINTS.items()],
    }


@router.get("/api/championships/{championship_id}/evaluations")
async def list_evaluations(
    championship_id: int,
    unit_id: Optional[int] = Query(None),
    date: Optional[datetime.date] = Query(None),
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    """
    Evaluations of one unit on one day.

    Query params:
    - unit_id: required
    - date: required (YYYY-MM-DD)
    """
    evaluations = await evaluation_service.list_evaluations(db, caller, championship_id, unit_id, date)
    return {"success": True, "evaluations": [e.to_dict() for e in evaluations]}


@router.post("/api/championships/{championship_id}/evaluations", status_code=status.HTTP_201_CREATED)
async def create_evaluation(
    championship_id: int,
    payload: EvaluationCreate,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    evaluation = await evaluation_service.create_evaluation(
        db,
        caller,
        championship_id,
        unit_id=payload.unit_id,
        evaluated_on=payload.date,
        area=payload.area,
        evaluation_type=payload.type,
        color=payload.color,
        description=payload.description,
    )
    return {"success": True, "evaluation": evaluation.to_dict()}


@router.delete("/api/evaluations/{evaluation_id}")
async def delete_evaluation(
    evaluation_id: int,
    db: AsyncSession = Depends(get_db),
    caller: Caller = Depends(get_caller),
) -> Dict[str, Any]:
    await evaluation_service.delete_evaluation(db, caller, evaluation_id)
    return {"success": True, "deleted": evaluation_id}
