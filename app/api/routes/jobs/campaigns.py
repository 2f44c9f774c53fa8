"""
Jobs agendados do marketing: execucao de campanhas e expiracao de cards.

Chamados por um agendador externo (cron) com `Authorization: Bearer <CRON_SECRET>`.
"""

import logging
import time

from fastapi import APIRouter, Depends

from app.core.auth import verify_cron_secret
from app.services.campaigns.engine import enrollment_manager, summarize_runs
from app.services.unlocks.evaluator import unlock_evaluator

from ._helpers import job_endpoint

router = APIRouter(dependencies=[Depends(verify_cron_secret)])
logger = logging.getLogger(__name__)


@router.post("/processar-campanhas")
@job_endpoint("processar-campanhas")
async def job_processar_campanhas():
    """
    Executa todas as campanhas ACTIVE.

    Falha de uma campanha aparece no resultado dela; as outras seguem.

    Schedule:
        A cada hora (0 * * * *)
    """
    inicio = time.monotonic()
    logger.info("[jobs/processar-campanhas] Iniciando execucao das campanhas")

    results = await enrollment_manager.process_all_campaigns()
    resumo = summarize_runs(results, int((time.monotonic() - inicio) * 1000))

    logger.info(
        f"[jobs/processar-campanhas] {resumo['campaigns']} campanhas, "
        f"{resumo['total_sent']} enviadas, {resumo['total_failed']} falhas"
    )
    return {"status": "ok", **resumo}


@router.post("/expirar-cards")
@job_endpoint("expirar-cards")
async def job_expirar_cards():
    """
    Expira cards de desbloqueio com expires_at no passado.

    Schedule:
        Diario as 03h (0 3 * * *)
    """
    expirados = await unlock_evaluator.expire_cards()
    return {"status": "ok", "expirados": len(expirados), "card_ids": expirados}
