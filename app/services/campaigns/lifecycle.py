"""
Ciclo de vida de destinatarios e mensagens.

Destinatario:
    ACTIVE -> COMPLETED | CONVERTED | OPTED_OUT | BOUNCED
    Estados terminais nunca mudam de novo.

Mensagem:
    PENDING -> SENT | FAILED | BOUNCED
    SENT -> DELIVERED | FAILED | BOUNCED

Callbacks repetidos do transporte (mesmo status) sao no-op.
"""
import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from app.core.exceptions import InvalidTransitionError, NotFoundError
from app.core.timezone import agora_utc, para_utc
from app.services.campaigns.drip import resolve_drip_config
from app.services.campaigns.repository import CampaignRepository, campaign_repository
from app.services.campaigns.types import (
    CampaignRecipient,
    ConversionEvent,
    EngagementType,
    Message,
    MessageStatus,
    RecipientStatus,
)
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.repository import CustomerPopulationRepository, population_repository
from app.services.segments.types import Channel

logger = logging.getLogger(__name__)


RECIPIENT_TRANSITIONS: Dict[RecipientStatus, FrozenSet[RecipientStatus]] = {
    RecipientStatus.ACTIVE: frozenset(
        {
            RecipientStatus.COMPLETED,
            RecipientStatus.CONVERTED,
            RecipientStatus.OPTED_OUT,
            RecipientStatus.BOUNCED,
        }
    ),
    RecipientStatus.COMPLETED: frozenset(),
    RecipientStatus.CONVERTED: frozenset(),
    RecipientStatus.OPTED_OUT: frozenset(),
    RecipientStatus.BOUNCED: frozenset(),
}

MESSAGE_TRANSITIONS: Dict[MessageStatus, FrozenSet[MessageStatus]] = {
    MessageStatus.PENDING: frozenset({MessageStatus.SENT, MessageStatus.FAILED, MessageStatus.BOUNCED}),
    MessageStatus.SENT: frozenset({MessageStatus.DELIVERED, MessageStatus.FAILED, MessageStatus.BOUNCED}),
    MessageStatus.DELIVERED: frozenset(),
    MessageStatus.FAILED: frozenset(),
    MessageStatus.BOUNCED: frozenset(),
}

# Coluna de timestamp gravada em cada status de mensagem
_MESSAGE_STATUS_COLUMN = {
    MessageStatus.SENT: "sent_at",
    MessageStatus.DELIVERED: "delivered_at",
    MessageStatus.FAILED: "failed_at",
    MessageStatus.BOUNCED: "failed_at",
}

_ENGAGEMENT_COLUMN = {
    EngagementType.OPENED: ("opened_at", "total_opened"),
    EngagementType.CLICKED: ("clicked_at", "total_clicked"),
}


def can_transition_recipient(current: RecipientStatus, target: RecipientStatus) -> bool:
    return target in RECIPIENT_TRANSITIONS.get(current, frozenset())


def can_transition_message(current: MessageStatus, target: MessageStatus) -> bool:
    return target in MESSAGE_TRANSITIONS.get(current, frozenset())


def ensure_recipient_transition(current: RecipientStatus, target: RecipientStatus) -> None:
    if not can_transition_recipient(current, target):
        raise InvalidTransitionError("destinatario", current.value, target.value)


def ensure_message_transition(current: MessageStatus, target: MessageStatus) -> None:
    if not can_transition_message(current, target):
        raise InvalidTransitionError("mensagem", current.value, target.value)


def can_contact(customer: Optional[CustomerSnapshot], channel: Channel) -> bool:
    """Cliente pode receber marketing neste canal agora."""
    if customer is None:
        return False
    if customer.get("marketing_opt_out"):
        return False
    if customer.get("is_active") is False:
        return False
    return customer.can_receive(channel)


class RecipientLifecycle:
    """Transicoes de destinatario e mensagem disparadas por eventos externos."""

    def __init__(
        self,
        repository: Optional[CampaignRepository] = None,
        population: Optional[CustomerPopulationRepository] = None,
    ):
        self._repository = repository or campaign_repository
        self._population = population or population_repository

    async def transition_recipient(
        self,
        recipient_id: str,
        target: RecipientStatus,
        at: Optional[datetime] = None,
    ) -> CampaignRecipient:
        """
        Move um destinatario para um estado terminal.

        Raises:
            NotFoundError: Destinatario nao existe
            InvalidTransitionError: Ja estava em estado terminal
        """
        recipient = await self._repository.get_recipient(recipient_id)
        if recipient is None:
            raise NotFoundError("destinatario", recipient_id)

        ensure_recipient_transition(recipient.status, target)

        at = para_utc(at) if at else agora_utc()
        fields = {}
        if target == RecipientStatus.COMPLETED:
            fields["completed_at"] = at.isoformat()
        elif target == RecipientStatus.CONVERTED:
            fields["converted_at"] = at.isoformat()
        elif target == RecipientStatus.OPTED_OUT:
            fields["opted_out_at"] = at.isoformat()

        updated = await self._repository.update_recipient_status(
            recipient_id, RecipientStatus.ACTIVE, target, fields
        )
        if updated is None:
            # Outro processo terminou o destinatario entre a leitura e a escrita
            atual = await self._repository.get_recipient(recipient_id)
            raise InvalidTransitionError(
                "destinatario",
                atual.status.value if atual else recipient.status.value,
                target.value,
            )

        logger.info(f"[Lifecycle] Destinatario {recipient_id}: ACTIVE -> {target.value}")
        return updated

    async def apply_delivery_status(
        self,
        message_id: str,
        status: MessageStatus,
        at: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> Message:
        """
        Aplica status reportado pelo transporte (webhook de entrega).

        BOUNCED tambem encerra o destinatario da mensagem.

        Raises:
            NotFoundError: Mensagem nao existe
            InvalidTransitionError: Regressao de status (ex: DELIVERED -> SENT)
        """
        message = await self._repository.get_message(message_id)
        if message is None:
            raise NotFoundError("mensagem", message_id)

        if message.status == status:
            return message

        ensure_message_transition(message.status, status)

        at = para_utc(at) if at else agora_utc()
        fields = {"status": status.value, _MESSAGE_STATUS_COLUMN[status]: at.isoformat()}
        if error:
            fields["error_message"] = error

        updated = await self._repository.update_message(message_id, message.status, fields)
        if updated is None:
            atual = await self._repository.get_message(message_id)
            if atual is not None and atual.status == status:
                return atual
            raise InvalidTransitionError(
                "mensagem",
                atual.status.value if atual else message.status.value,
                status.value,
            )

        if status == MessageStatus.DELIVERED:
            await self._repository.increment_counters(message.campaign_id, total_delivered=1)

        if status == MessageStatus.BOUNCED and message.recipient_id:
            bounced = await self._repository.update_recipient_status(
                message.recipient_id, RecipientStatus.ACTIVE, RecipientStatus.BOUNCED
            )
            if bounced:
                logger.info(f"[Lifecycle] Destinatario {message.recipient_id} BOUNCED via callback")

        return updated

    async def record_engagement(
        self,
        message_id: str,
        kind: EngagementType,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Registra abertura ou clique. So o primeiro evento conta.

        Returns:
            True se registrou, False se ja estava registrado
        """
        message = await self._repository.get_message(message_id)
        if message is None:
            raise NotFoundError("mensagem", message_id)

        column, counter = _ENGAGEMENT_COLUMN[kind]
        if getattr(message, column) is not None:
            return False

        stamped = await self._repository.stamp_engagement(
            message_id, column, para_utc(at) if at else agora_utc()
        )
        if stamped:
            await self._repository.increment_counters(message.campaign_id, **{counter: 1})
        return stamped

    async def process_opt_out(
        self,
        customer_id: str,
        source: str,
        reason: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> int:
        """
        Opt-out global de marketing.

        Marca o cliente e encerra todas as matriculas ACTIVE dele. Mensagens
        ja enviadas nao sao afetadas.

        Returns:
            Quantidade de matriculas encerradas

        Raises:
            NotFoundError: Cliente nao existe
        """
        at = para_utc(at) if at else agora_utc()

        marcado = await self._population.mark_opted_out(customer_id, source, reason, at)
        if not marcado:
            raise NotFoundError("cliente", customer_id)

        encerradas = await self._repository.opt_out_active_recipients(customer_id, at)
        logger.info(
            f"[Lifecycle] Opt-out do cliente {customer_id} ({source}): {encerradas} matriculas encerradas"
        )
        return encerradas

    async def record_conversion(self, event: ConversionEvent) -> List[str]:
        """
        Atribui uma conversao as campanhas que pararam no evento.

        So conta matriculas ACTIVE anteriores ao evento, em campanhas com
        stop_on_conversion.

        Returns:
            IDs das campanhas que registraram a conversao
        """
        occurred_at = para_utc(event.occurred_at)
        matriculas = await self._repository.list_active_recipients_for_customer(event.customer_id)
        elegiveis = [
            r for r in matriculas
            if r.enrolled_at is not None and para_utc(r.enrolled_at) <= occurred_at
        ]
        if not elegiveis:
            return []

        campanhas = await self._repository.get_many(r.campaign_id for r in elegiveis)
        convertidas = []

        for recipient in elegiveis:
            campanha = campanhas.get(recipient.campaign_id)
            if campanha is None or not resolve_drip_config(campanha).stop_on_conversion:
                continue

            updated = await self._repository.update_recipient_status(
                recipient.id,
                RecipientStatus.ACTIVE,
                RecipientStatus.CONVERTED,
                {
                    "converted_at": occurred_at.isoformat(),
                    "conversion_value": event.value,
                },
            )
            if updated is None:
                continue

            await self._repository.increment_counters(
                campanha.id, total_converted=1, total_revenue=event.value
            )
            convertidas.append(campanha.id)

        if convertidas:
            logger.info(
                f"[Lifecycle] Conversao {event.kind.value} do cliente {event.customer_id} "
                f"atribuida a {len(convertidas)} campanha(s)"
            )
        return convertidas


recipient_lifecycle = RecipientLifecycle()
