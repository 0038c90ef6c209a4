"""
Ranking synchronization API Routes

Operator-triggered recomputation of a championship's ranking.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from championship.database import get_session_factory
from championship.security.capabilities import Caller, get_caller
from championship.services.ranking_synchronizer import RankingSynchronizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/championships", tags=["Ranking"])


def get_synchronizer(request: Request) -> RankingSynchronizer:
    """
    The process-wide synchronizer.

    It keeps the bookkeeping of background runs, so every request must
    see the same instance; it is created on first use and kept on app.state.
    """
    synchronizer = getattr(request.app.state, "synchronizer", None)
    if synchronizer is None:
        synchronizer = RankingSynchronizer(get_session_factory())
        request.app.state.synchronizer = synchronizer
    return synchronizer


@router.post("/{championship_id}/ranking/sync")
async def synchronize_ranking(
    championship_id: int,
    background: bool = Query(False),
    timeout: Optional[float] = Query(None, gt=0, le=600),
    caller: Caller = Depends(get_caller),
    synchronizer: RankingSynchronizer = Depends(get_synchronizer),
) -> Dict[str, Any]:
    """
    Recompute and publish a new ranking snapshot.

    Query params:
    - background: return "started" immediately and run in the background
    - timeout: seconds before the run is aborted (foreground only)
    """
    if background:
        outcome = await synchronizer.launch(championship_id, caller)
        return {"success": True, **outcome}

    result = await synchronizer.synchronize(championship_id, caller, timeout=timeout)
    return {
        "success": True,
        "outcome": "completed",
        "snapshot": result.to_dict(),
    }


@router.get("/{championship_id}/ranking/sync")
async def get_sync_status(
    championship_id: int,
    caller: Caller = Depends(get_caller),
    synchronizer: RankingSynchronizer = Depends(get_synchronizer),
) -> Dict[str, Any]:
    """State of the last synchronization: running, completed, failed or idle."""
    status = await synchronizer.status(championship_id, caller)
    return {"success": True, "sync": status}
