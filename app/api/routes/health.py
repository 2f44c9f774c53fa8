"""
Rotas de health check.

- /health: Liveness basico (sempre 200 se app rodando)
- /health/ready: Readiness (Redis + Supabase)
- /health/tasks: Falhas de background tasks desde o boot
"""
from fastapi import APIRouter, Response
import logging

from app.core.config import settings
from app.core.tasks import get_task_failure_counts, pending_task_count
from app.core.timezone import iso_utc
from app.services.redis import verificar_conexao_redis
from app.services.supabase import verificar_conexao_supabase

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """
    Verifica se a API esta funcionando.
    Usado para monitoramento e load balancers.
    """
    return {
        "status": "healthy",
        "timestamp": iso_utc(),
        "service": "marketing-core",
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/ready")
async def readiness_check(response: Response):
    """
    Verifica se a API esta pronta para receber requests.

    503 se alguma dependencia estiver fora.
    """
    redis_ok = await verificar_conexao_redis()
    database_ok = verificar_conexao_supabase()

    if not (redis_ok and database_ok):
        response.status_code = 503
        logger.warning(f"Readiness degradado: redis={redis_ok} database={database_ok}")

    return {
        "status": "ready" if redis_ok and database_ok else "degraded",
        "checks": {
            "database": "ok" if database_ok else "error",
            "redis": "ok" if redis_ok else "error",
        },
    }


@router.get("/health/tasks")
async def background_tasks_health():
    """Contagem de falhas por background task (audit log, gatilhos de desbloqueio)."""
    falhas = get_task_failure_counts()
    return {
        "status": "ok" if not falhas else "warning",
        "failures": falhas,
        "pending": pending_task_count(),
        "timestamp": iso_utc(),
    }
