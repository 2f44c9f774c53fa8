"""
Endpoints para jobs e tarefas agendadas.
"""

from fastapi import APIRouter

from .campaigns import router as campaigns_router

router = APIRouter(prefix="/jobs", tags=["Jobs"])
router.include_router(campaigns_router)
