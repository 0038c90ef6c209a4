"""
championship/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from championship.routes import championships, ranking, dashboards, demerits, evaluations, classes

router = APIRouter()

router.include_router(championships.router)
router.include_router(ranking.router)
router.include_router(dashboards.router)
router.include_router(demerits.router)
router.include_router(evaluations.router)
router.include_router(classes.router)
