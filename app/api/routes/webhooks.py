"""
Webhooks de entrada: callbacks do gateway de mensagens e eventos de
outros sistemas (opt-out, conversao, gatilhos de desbloqueio).
"""
import hashlib
import hmac
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.timezone import para_utc
from app.services.campaigns.lifecycle import recipient_lifecycle
from app.services.campaigns.repository import campaign_repository
from app.services.campaigns.types import (
    ConversionEvent,
    ConversionKind,
    EngagementType,
    MessageStatus,
)
from app.services.unlocks.evaluator import schedule_unlock_check

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


class StatusEntregaRequest(BaseModel):
    message_id: Optional[str] = None
    external_id: Optional[str] = None
    status: MessageStatus
    error: Optional[str] = None
    occurred_at: Optional[datetime] = None


class EngajamentoRequest(BaseModel):
    message_id: Optional[str] = None
    external_id: Optional[str] = None
    type: EngagementType
    occurred_at: Optional[datetime] = None


class OptOutRequest(BaseModel):
    customer_id: str
    source: str = Field("webhook", description="Origem: STOP por SMS, link de email, balcao")
    reason: Optional[str] = None


class ConversaoRequest(BaseModel):
    customer_id: str
    kind: ConversionKind
    occurred_at: datetime
    value: float = 0.0
    reference_id: Optional[str] = None


class EventoFamiliaRequest(BaseModel):
    family_id: str
    event: Optional[str] = None


async def _verificar_assinatura(request: Request) -> None:
    """
    Valida X-Signature (HMAC-SHA256 do corpo) dos callbacks do gateway.

    Sem TRANSPORT_WEBHOOK_SECRET configurado, aceita tudo.
    """
    if not settings.TRANSPORT_WEBHOOK_SECRET:
        return

    signature = request.headers.get("X-Signature", "")
    body = await request.body()
    esperada = hmac.new(
        settings.TRANSPORT_WEBHOOK_SECRET.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(esperada, signature):
        logger.warning("[Webhook] Assinatura invalida em callback do gateway")
        raise HTTPException(status_code=401, detail="Invalid signature")


async def _resolver_message_id(message_id: Optional[str], external_id: Optional[str]) -> str:
    if message_id:
        return message_id
    if not external_id:
        raise HTTPException(status_code=400, detail="message_id ou external_id obrigatorio")

    message = await campaign_repository.get_message_by_external_id(external_id)
    if message is None:
        raise NotFoundError("mensagem", external_id)
    return message.id


@router.post("/transport/status")
async def status_entrega(dados: StatusEntregaRequest, request: Request):
    """
    Status de entrega reportado pelo gateway (SENT, DELIVERED, BOUNCED, FAILED).

    Status repetido e idempotente; regressao retorna 409.
    """
    await _verificar_assinatura(request)
    if dados.status == MessageStatus.PENDING:
        raise HTTPException(status_code=400, detail="Status PENDING nao e aceito em callback")

    message_id = await _resolver_message_id(dados.message_id, dados.external_id)
    message = await recipient_lifecycle.apply_delivery_status(
        message_id, dados.status, at=dados.occurred_at, error=dados.error
    )
    return {"status": "ok", "message_id": message.id, "message_status": message.status.value}


@router.post("/transport/engagement")
async def engajamento(dados: EngajamentoRequest, request: Request):
    """Abertura ou clique. So o primeiro evento de cada tipo e contado."""
    await _verificar_assinatura(request)

    message_id = await _resolver_message_id(dados.message_id, dados.external_id)
    registrado = await recipient_lifecycle.record_engagement(
        message_id, dados.type, at=dados.occurred_at
    )
    return {"status": "ok", "recorded": registrado}


@router.post("/opt-out")
async def opt_out(dados: OptOutRequest):
    """Opt-out global de marketing; encerra as matriculas ativas."""
    encerradas = await recipient_lifecycle.process_opt_out(
        dados.customer_id, dados.source, dados.reason
    )
    return {"status": "ok", "customer_id": dados.customer_id, "recipients_opted_out": encerradas}


@router.post("/conversao")
async def conversao(dados: ConversaoRequest):
    """Pedido, indicacao ou agendamento que encerra sequencias do cliente."""
    event = ConversionEvent(
        customer_id=dados.customer_id,
        kind=dados.kind,
        occurred_at=para_utc(dados.occurred_at),
        value=dados.value,
        reference_id=dados.reference_id,
    )
    campanhas = await recipient_lifecycle.record_conversion(event)
    return {"status": "ok", "campaigns": campanhas}


@router.post("/familia", status_code=202)
async def evento_familia(dados: EventoFamiliaRequest):
    """
    Evento que pode desbloquear cards da familia (quiz, indicacao, pedido,
    agendamento). A avaliacao roda em background.
    """
    task = schedule_unlock_check(dados.family_id)
    logger.info(f"[Webhook] Evento {dados.event or '-'} da familia {dados.family_id}")
    return {"status": "scheduled" if task is not None else "ignored", "family_id": dados.family_id}
