"""
Rotas dos cards de desbloqueio da familia.
"""
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core.auth import Actor, get_current_actor, require_admin
from app.services.unlocks.evaluator import UnlockEvaluator, unlock_evaluator
from app.services.unlocks.types import UnlockCardStatus

router = APIRouter(prefix="/unlocks", tags=["unlocks"])
logger = logging.getLogger(__name__)


class StatusCardRequest(BaseModel):
    status: UnlockCardStatus


def get_unlock_evaluator() -> UnlockEvaluator:
    return unlock_evaluator


@router.get("/familias/{family_id}/cards")
async def listar_cards(
    family_id: str,
    actor: Actor = Depends(get_current_actor),
    evaluator: UnlockEvaluator = Depends(get_unlock_evaluator),
):
    cards = await evaluator.list_family_cards(family_id)
    return {"family_id": family_id, "cards": [c.to_dict() for c in cards]}


@router.post("/familias/{family_id}/avaliar")
async def avaliar_familia(
    family_id: str,
    actor: Actor = Depends(get_current_actor),
    evaluator: UnlockEvaluator = Depends(get_unlock_evaluator),
):
    """Avaliacao sincrona dos gatilhos (uso administrativo e suporte)."""
    evaluation = await evaluator.check_and_unlock_cards(family_id)
    return evaluation.to_dict()


@router.post("/cards/{card_id}/status")
async def alterar_status_card(
    card_id: str,
    dados: StatusCardRequest,
    actor: Actor = Depends(require_admin),
    evaluator: UnlockEvaluator = Depends(get_unlock_evaluator),
):
    """Override manual de status (somente ADMIN)."""
    card = await evaluator.override_card_status(card_id, dados.status, actor.id)
    return {"success": True, "card": card.to_dict()}


@router.post("/cards/{card_id}/resgatar")
async def resgatar_card(
    card_id: str,
    actor: Actor = Depends(get_current_actor),
    evaluator: UnlockEvaluator = Depends(get_unlock_evaluator),
):
    card = await evaluator.claim_card(card_id, actor.id)
    return {"success": True, "card": card.to_dict()}
