"""
Rotas de Campanhas drip.

A rota so conhece HTTP: recebe request, chama o Application Service e
converte o ActionResult em resposta. Nenhum acesso a dados aqui.
"""
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.contexts.campaigns.application import (
    ActionResult,
    CampaignsApplicationService,
    get_campaigns_service,
)
from app.core.auth import Actor, get_current_actor

router = APIRouter(prefix="/campanhas", tags=["campanhas"])


# ---------------------------------------------------------------------------
# Schemas de Request
# ---------------------------------------------------------------------------

class CriterioRequest(BaseModel):
    field: str
    operator: str
    value: Any = None


class SegmentoRequest(BaseModel):
    criteria: List[CriterioRequest] = Field(default_factory=list)
    exclude_marketing_opt_out: bool = True
    exclude_recently_contacted_days: Optional[int] = None
    require_channel: Optional[str] = None


class CriarCampanhaRequest(BaseModel):
    name: str = Field(..., description="Nome da campanha")
    type: str = Field(..., description="Tipo da campanha (ex: EXAM_REMINDER)")
    description: Optional[str] = None
    segment: Optional[Union[SegmentoRequest, List[CriterioRequest]]] = Field(
        None, description="Sem segmento, usa o preset do tipo"
    )
    config: Optional[Dict[str, Any]] = Field(None, description="Sequencia propria de passos")


class AtualizarCampanhaRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class MatricularRequest(BaseModel):
    customer_id: str


def _responder(result: ActionResult) -> JSONResponse:
    """ActionResult -> JSON. Falha vira 400 com a mensagem para a UI."""
    return JSONResponse(result.to_dict(), status_code=200 if result.success else 400)


def _segmento_dict(segment) -> Any:
    if segment is None:
        return None
    if isinstance(segment, list):
        return [c.model_dump() for c in segment]
    return segment.model_dump()


# ---------------------------------------------------------------------------
# Segmentos
# ---------------------------------------------------------------------------

@router.get("/segmento/campos")
async def listar_campos_segmento(
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    """Campos de segmento disponiveis, com operadores permitidos."""
    return _responder(service.list_segment_fields())


@router.post("/segmento/preview")
async def preview_segmento(
    segmento: Union[SegmentoRequest, List[CriterioRequest]],
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    """Conta e amostra clientes do segmento."""
    return _responder(await service.preview_segment(_segmento_dict(segmento)))


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@router.get("/")
async def listar_campanhas(
    status: Optional[str] = None,
    limit: int = 50,
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.list_campaigns(status=status, limit=limit))


@router.post("/")
async def criar_campanha(
    dados: CriarCampanhaRequest,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    result = await service.create_campaign(
        name=dados.name,
        campaign_type=dados.type,
        actor=actor.id,
        description=dados.description,
        segment=_segmento_dict(dados.segment),
        config=dados.config,
    )
    return _responder(result)


@router.get("/{campaign_id}")
async def detalhe_campanha(
    campaign_id: str,
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.get_campaign_detail(campaign_id))


@router.get("/{campaign_id}/analytics")
async def analytics_campanha(
    campaign_id: str,
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.get_campaign_analytics(campaign_id))


@router.patch("/{campaign_id}")
async def atualizar_campanha(
    campaign_id: str,
    dados: AtualizarCampanhaRequest,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    result = await service.update_campaign(
        campaign_id, actor.id, name=dados.name, description=dados.description
    )
    return _responder(result)


@router.delete("/{campaign_id}")
async def remover_campanha(
    campaign_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.delete_campaign(campaign_id, actor.id))


# ---------------------------------------------------------------------------
# Status e execucao
# ---------------------------------------------------------------------------

@router.post("/{campaign_id}/ativar")
async def ativar_campanha(
    campaign_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.activate_campaign(campaign_id, actor.id))


@router.post("/{campaign_id}/pausar")
async def pausar_campanha(
    campaign_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.pause_campaign(campaign_id, actor.id))


@router.post("/{campaign_id}/arquivar")
async def arquivar_campanha(
    campaign_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.archive_campaign(campaign_id, actor.id))


@router.post("/{campaign_id}/executar")
async def executar_campanha(
    campaign_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    """Execucao manual imediata (somente ADMIN)."""
    return _responder(await service.trigger_run_now(campaign_id, actor.id, actor.role.value))


# ---------------------------------------------------------------------------
# Destinatarios
# ---------------------------------------------------------------------------

@router.post("/{campaign_id}/destinatarios")
async def matricular_cliente(
    campaign_id: str,
    dados: MatricularRequest,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.enroll_customer(campaign_id, dados.customer_id, actor.id))


@router.delete("/destinatarios/{recipient_id}")
async def remover_destinatario(
    recipient_id: str,
    actor: Actor = Depends(get_current_actor),
    service: CampaignsApplicationService = Depends(get_campaigns_service),
):
    return _responder(await service.remove_recipient(recipient_id, actor.id))
