"""
Avaliador de gatilhos dos cards de desbloqueio.

Chamado depois de eventos do cliente (quiz de estilo, agendamento,
indicacao, retirada de pedido) via `schedule_unlock_check`, que roda em
background: falha aqui nunca afeta a acao que disparou.

So cards LOCKED sao avaliados. UNLOCKED/CLAIMED/EXPIRED nunca sao tocados
pela avaliacao automatica.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

from app.core.config import CampaignsConfig
from app.core.exceptions import InvalidTransitionError, NotFoundError
from app.core.tasks import safe_create_task
from app.core.timezone import agora_utc
from app.services import audit
from app.services.unlocks.repository import UnlockRepository, unlock_repository
from app.services.unlocks.types import (
    AppointmentBooked,
    OrderCount,
    ReferralCount,
    RuleResult,
    StyleQuizCompleted,
    TriggerRule,
    UnlockCard,
    UnlockCardStatus,
    UnlockEvaluation,
)

logger = logging.getLogger(__name__)


class _FamilyState:
    """Estado da familia carregado sob demanda, uma vez por avaliacao."""

    def __init__(self, repository: UnlockRepository, members: List[dict], now: datetime):
        self._repository = repository
        self.members = members
        self.member_ids = [str(m["id"]) for m in members]
        self.now = now
        self._cache: Dict[str, object] = {}

    async def _once(self, key: str, loader):
        if key not in self._cache:
            self._cache[key] = await loader()
        return self._cache[key]

    async def referral_count(self) -> int:
        return await self._once(
            "referrals", lambda: self._repository.count_qualifying_referrals(self.member_ids)
        )

    async def order_count(self) -> int:
        return await self._once(
            "orders", lambda: self._repository.count_picked_up_orders(self.member_ids)
        )

    async def has_future_appointment(self) -> bool:
        return await self._once(
            "appointments",
            lambda: self._repository.has_future_appointment(self.member_ids, self.now),
        )


async def evaluate_rule(rule: TriggerRule, state: _FamilyState) -> RuleResult:
    """Avalia uma regra contra o estado da familia."""
    if isinstance(rule, StyleQuizCompleted):
        return RuleResult(met=any(m.get("style_profile") is not None for m in state.members))

    if isinstance(rule, ReferralCount):
        count = await state.referral_count()
        return RuleResult(met=count >= rule.threshold, progress=count)

    if isinstance(rule, OrderCount):
        count = await state.order_count()
        return RuleResult(met=count >= rule.threshold, progress=count)

    if isinstance(rule, AppointmentBooked):
        return RuleResult(met=await state.has_future_appointment())

    return RuleResult(met=False)


class UnlockEvaluator:
    """Avaliacao de gatilhos e operacoes administrativas de cards."""

    def __init__(self, repository: Optional[UnlockRepository] = None):
        self._repository = repository or unlock_repository

    async def check_and_unlock_cards(
        self,
        family_id: str,
        now: Optional[datetime] = None,
    ) -> UnlockEvaluation:
        """
        Avalia todos os cards LOCKED com regra da familia.

        Regra satisfeita -> UNLOCKED (unlocked_by="system"). Regras com
        contagem atualizam `progress` mesmo sem desbloquear. Erro em um
        card (inclusive regra invalida) conta em `errors` e nao impede os
        outros. Nunca levanta excecao.
        """
        now = now or agora_utc()
        evaluation = UnlockEvaluation(family_id=family_id)

        try:
            cards = await self._repository.list_locked_with_rule(family_id)
            if not cards:
                return evaluation
            members = await self._repository.list_active_members(family_id)
        except Exception as e:
            logger.error(f"[UnlockEvaluator] Erro ao carregar estado da familia {family_id}: {e}")
            evaluation.errors += 1
            return evaluation

        state = _FamilyState(self._repository, members, now)

        for card in cards:
            if card.trigger_rule is None:
                # Regra gravada mas ilegivel: card nunca desbloqueia sozinho
                evaluation.errors += 1
                logger.warning(
                    f"[UnlockEvaluator] Card {card.id} com trigger_rule invalida: {card.raw_trigger_rule}",
                    extra={"family_id": family_id, "card_id": card.id},
                )
                continue
            evaluation.evaluated += 1
            try:
                await self._evaluate_card(card, state, evaluation)
            except Exception as e:
                evaluation.errors += 1
                logger.error(
                    f"[UnlockEvaluator] Erro ao avaliar card {card.id}: {e}",
                    extra={"family_id": family_id, "card_id": card.id},
                )

        if evaluation.unlocked:
            logger.info(
                f"[UnlockEvaluator] Familia {family_id}: {evaluation.unlocked} card(s) desbloqueado(s)"
            )
        return evaluation

    async def _evaluate_card(
        self,
        card: UnlockCard,
        state: _FamilyState,
        evaluation: UnlockEvaluation,
    ) -> None:
        result = await evaluate_rule(card.trigger_rule, state)

        if result.met:
            fields = {
                "status": UnlockCardStatus.UNLOCKED.value,
                "unlocked_at": state.now.isoformat(),
                "unlocked_by": CampaignsConfig.SYSTEM_ACTOR,
            }
            if result.progress is not None:
                fields["progress"] = result.progress
            updated = await self._repository.update_card(
                card.id, fields, expected_status=UnlockCardStatus.LOCKED
            )
            if updated:
                evaluation.unlocked += 1
            return

        if result.progress is not None and result.progress != card.progress:
            updated = await self._repository.update_card(
                card.id, {"progress": result.progress}, expected_status=UnlockCardStatus.LOCKED
            )
            if updated:
                evaluation.progressed += 1

    def schedule_unlock_check(self, family_id: Optional[str]) -> Optional[asyncio.Task]:
        """Dispara check_and_unlock_cards em background."""
        if not family_id:
            return None
        return safe_create_task(
            self.check_and_unlock_cards(family_id),
            name=f"unlock_check:{family_id}",
        )

    async def override_card_status(
        self,
        card_id: str,
        new_status: UnlockCardStatus,
        actor: str,
        now: Optional[datetime] = None,
    ) -> UnlockCard:
        """
        Mudanca manual de status por um administrador. Auditada.

        Raises:
            NotFoundError: Card nao existe
        """
        card = await self._repository.get_card(card_id)
        if card is None:
            raise NotFoundError("card", card_id)

        now = now or agora_utc()
        fields = {"status": new_status.value}
        if new_status == UnlockCardStatus.UNLOCKED:
            fields["unlocked_at"] = now.isoformat()
            fields["unlocked_by"] = actor
        elif new_status == UnlockCardStatus.CLAIMED:
            fields["claimed_at"] = now.isoformat()

        updated = await self._repository.update_card(card_id, fields)
        if updated is None:
            raise NotFoundError("card", card_id)

        audit.record(
            actor,
            audit.AuditAction.STATUS_CHANGE,
            "UnlockCard",
            card_id,
            {"from": card.status.value, "to": new_status.value},
        )
        return updated

    async def claim_card(
        self,
        card_id: str,
        actor: str,
        now: Optional[datetime] = None,
    ) -> UnlockCard:
        """
        Resgate de um card UNLOCKED.

        Raises:
            NotFoundError: Card nao existe
            InvalidTransitionError: Card nao esta UNLOCKED
        """
        card = await self._repository.get_card(card_id)
        if card is None:
            raise NotFoundError("card", card_id)
        if card.status != UnlockCardStatus.UNLOCKED:
            raise InvalidTransitionError("card", card.status.value, UnlockCardStatus.CLAIMED.value)

        now = now or agora_utc()
        updated = await self._repository.update_card(
            card_id,
            {"status": UnlockCardStatus.CLAIMED.value, "claimed_at": now.isoformat()},
            expected_status=UnlockCardStatus.UNLOCKED,
        )
        if updated is None:
            atual = await self._repository.get_card(card_id)
            raise InvalidTransitionError(
                "card",
                atual.status.value if atual else card.status.value,
                UnlockCardStatus.CLAIMED.value,
            )

        audit.record(actor, audit.AuditAction.STATUS_CHANGE, "UnlockCard", card_id,
                     {"from": UnlockCardStatus.UNLOCKED.value, "to": UnlockCardStatus.CLAIMED.value})
        return updated

    async def list_family_cards(self, family_id: str) -> List[UnlockCard]:
        return await self._repository.list_family_cards(family_id)

    async def expire_cards(self, now: Optional[datetime] = None) -> List[str]:
        """Expira cards LOCKED/UNLOCKED vencidos. Retorna os IDs expirados."""
        expirados = await self._repository.expire_past_due(now or agora_utc())
        if expirados:
            logger.info(f"[UnlockEvaluator] {len(expirados)} card(s) expirado(s)")
        return expirados


unlock_evaluator = UnlockEvaluator()


async def check_and_unlock_cards(family_id: str, now: Optional[datetime] = None) -> UnlockEvaluation:
    return await unlock_evaluator.check_and_unlock_cards(family_id, now=now)


def schedule_unlock_check(family_id: Optional[str]) -> Optional[asyncio.Task]:
    return unlock_evaluator.schedule_unlock_check(family_id)
