"""
Tipos e enums para campanhas drip.

Entidades:
- Campaign: configuracao de publico + sequencia de passos
- CampaignRecipient: matricula de um cliente em uma campanha
- Message: registro append-only de um disparo
- CampaignRun: auditoria write-once de uma execucao
- ConversionEvent: sinal externo de conversao
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from app.core.timezone import parse_datetime
from app.services.segments.types import Channel, SegmentDefinition

logger = logging.getLogger(__name__)


class CampaignType(str, Enum):
    """Proposito da campanha. Define os presets de segmento e de passos."""

    EXAM_REMINDER = "EXAM_REMINDER"
    WALKIN_FOLLOWUP = "WALKIN_FOLLOWUP"
    INSURANCE_RENEWAL = "INSURANCE_RENEWAL"
    ONE_TIME_BLAST = "ONE_TIME_BLAST"
    SECOND_PAIR = "SECOND_PAIR"
    PRESCRIPTION_EXPIRY = "PRESCRIPTION_EXPIRY"
    ABANDONMENT_RECOVERY = "ABANDONMENT_RECOVERY"
    FAMILY_ADDON = "FAMILY_ADDON"
    INSURANCE_MAXIMIZATION = "INSURANCE_MAXIMIZATION"
    POST_PURCHASE_REFERRAL = "POST_PURCHASE_REFERRAL"
    VIP_INSIDER = "VIP_INSIDER"
    DAMAGE_REPLACEMENT = "DAMAGE_REPLACEMENT"
    BIRTHDAY_ANNIVERSARY = "BIRTHDAY_ANNIVERSARY"
    DORMANT_REACTIVATION = "DORMANT_REACTIVATION"
    COMPETITOR_SWITCHER = "COMPETITOR_SWITCHER"
    LIFESTYLE_MARKETING = "LIFESTYLE_MARKETING"
    AGING_INVENTORY = "AGING_INVENTORY"
    NEW_ARRIVAL_VIP = "NEW_ARRIVAL_VIP"
    EDUCATIONAL_NURTURE = "EDUCATIONAL_NURTURE"
    LENS_EDUCATION = "LENS_EDUCATION"
    STYLE_EVOLUTION = "STYLE_EVOLUTION"


class CampaignStatus(str, Enum):
    """Status possiveis de uma campanha."""

    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


class RecipientStatus(str, Enum):
    """Status de um destinatario. Todos exceto ACTIVE sao terminais."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    OPTED_OUT = "OPTED_OUT"
    CONVERTED = "CONVERTED"
    BOUNCED = "BOUNCED"


TERMINAL_RECIPIENT_STATUSES = frozenset(
    {
        RecipientStatus.COMPLETED,
        RecipientStatus.OPTED_OUT,
        RecipientStatus.CONVERTED,
        RecipientStatus.BOUNCED,
    }
)


class MessageStatus(str, Enum):
    """Status de entrega de uma mensagem."""

    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    BOUNCED = "BOUNCED"


class EngagementType(str, Enum):
    OPENED = "OPENED"
    CLICKED = "CLICKED"


class ConversionKind(str, Enum):
    """Eventos externos que contam como conversao."""

    ORDER_PLACED = "ORDER_PLACED"
    REFERRAL_REDEEMED = "REFERRAL_REDEEMED"
    APPOINTMENT_BOOKED = "APPOINTMENT_BOOKED"


@dataclass
class DripStep:
    """Um passo da sequencia: espera `delay_days` desde o passo anterior."""

    step_index: int
    delay_days: int
    channel: Channel
    template_body: str
    template_subject: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "step_index": self.step_index,
            "delay_days": self.delay_days,
            "channel": self.channel.value,
            "template_body": self.template_body,
            "template_subject": self.template_subject,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DripStep":
        return cls(
            step_index=int(data.get("step_index", 0)),
            delay_days=int(data.get("delay_days", 0)),
            channel=Channel(data.get("channel", Channel.SMS.value)),
            template_body=data.get("template_body", ""),
            template_subject=data.get("template_subject"),
        )


@dataclass
class CampaignConfig:
    """Sequencia de passos e politicas da campanha."""

    steps: List[DripStep] = field(default_factory=list)
    stop_on_conversion: bool = True
    cooldown_days: int = 0
    enrollment_mode: str = "auto"

    def to_dict(self) -> dict:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "stop_on_conversion": self.stop_on_conversion,
            "cooldown_days": self.cooldown_days,
            "enrollment_mode": self.enrollment_mode,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["CampaignConfig"]:
        """Cria a partir de dicionario. None se nao houver config propria."""
        if not data or not data.get("steps"):
            return None
        return cls(
            steps=[DripStep.from_dict(s) for s in data["steps"]],
            stop_on_conversion=data.get("stop_on_conversion", True),
            cooldown_days=data.get("cooldown_days", 0),
            enrollment_mode=data.get("enrollment_mode", "auto"),
        )


@dataclass
class Campaign:
    """Dados de uma campanha."""

    id: str
    name: str
    type: CampaignType
    status: CampaignStatus = CampaignStatus.DRAFT
    description: Optional[str] = None
    segment: SegmentDefinition = field(default_factory=SegmentDefinition)
    config: Optional[CampaignConfig] = None
    total_sent: int = 0
    total_delivered: int = 0
    total_opened: int = 0
    total_clicked: int = 0
    total_converted: int = 0
    total_revenue: float = 0.0
    last_run_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.ACTIVE

    @classmethod
    def from_db_row(cls, row: dict) -> "Campaign":
        """Cria a partir de linha do banco."""
        # Tipo desconhecido cai em ONE_TIME_BLAST (matricula manual, sem envio automatico)
        try:
            tipo = CampaignType(row.get("type"))
        except ValueError:
            logger.warning(
                f"[Campaign] Tipo desconhecido '{row.get('type')}' na campanha {row.get('id')}; "
                f"tratada como {CampaignType.ONE_TIME_BLAST.value}"
            )
            tipo = CampaignType.ONE_TIME_BLAST

        # Status desconhecido nunca vira ACTIVE
        try:
            status = CampaignStatus(row.get("status", CampaignStatus.DRAFT.value))
        except ValueError:
            status = CampaignStatus.DRAFT

        return cls(
            id=str(row["id"]),
            name=row.get("name", ""),
            type=tipo,
            status=status,
            description=row.get("description"),
            segment=SegmentDefinition.from_dict(row.get("segment")),
            config=CampaignConfig.from_dict(row.get("config")),
            total_sent=row.get("total_sent") or 0,
            total_delivered=row.get("total_delivered") or 0,
            total_opened=row.get("total_opened") or 0,
            total_clicked=row.get("total_clicked") or 0,
            total_converted=row.get("total_converted") or 0,
            total_revenue=float(row.get("total_revenue") or 0),
            last_run_at=parse_datetime(row.get("last_run_at")),
            created_by=row.get("created_by"),
            created_at=parse_datetime(row.get("created_at")),
            updated_at=parse_datetime(row.get("updated_at")),
        )

    def to_dict(self) -> dict:
        """Converte para dicionario."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "status": self.status.value,
            "description": self.description,
            "segment": self.segment.to_dict(),
            "config": self.config.to_dict() if self.config else None,
            "total_sent": self.total_sent,
            "total_delivered": self.total_delivered,
            "total_opened": self.total_opened,
            "total_clicked": self.total_clicked,
            "total_converted": self.total_converted,
            "total_revenue": self.total_revenue,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class CampaignRecipient:
    """Matricula de um cliente em uma campanha. Unica por (campanha, cliente)."""

    id: str
    campaign_id: str
    customer_id: str
    status: RecipientStatus = RecipientStatus.ACTIVE
    current_step: int = 0
    enrolled_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    conversion_value: Optional[float] = None
    opted_out_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RECIPIENT_STATUSES

    @classmethod
    def from_db_row(cls, row: dict) -> "CampaignRecipient":
        return cls(
            id=str(row["id"]),
            campaign_id=str(row["campaign_id"]),
            customer_id=str(row["customer_id"]),
            status=RecipientStatus(row.get("status", RecipientStatus.ACTIVE.value)),
            current_step=row.get("current_step") or 0,
            enrolled_at=parse_datetime(row.get("enrolled_at")),
            last_message_at=parse_datetime(row.get("last_message_at")),
            completed_at=parse_datetime(row.get("completed_at")),
            converted_at=parse_datetime(row.get("converted_at")),
            conversion_value=row.get("conversion_value"),
            opted_out_at=parse_datetime(row.get("opted_out_at")),
        )

    def to_dict(self) -> dict:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "customer_id": self.customer_id,
            "status": self.status.value,
            "current_step": self.current_step,
            "enrolled_at": iso(self.enrolled_at),
            "last_message_at": iso(self.last_message_at),
            "completed_at": iso(self.completed_at),
            "converted_at": iso(self.converted_at),
            "conversion_value": self.conversion_value,
            "opted_out_at": iso(self.opted_out_at),
        }


@dataclass
class Message:
    """Registro de um disparo. Atualizado so pelo transporte depois de finalizado."""

    id: str
    campaign_id: str
    customer_id: str
    channel: Channel
    body: str
    status: MessageStatus = MessageStatus.PENDING
    recipient_id: Optional[str] = None
    run_id: Optional[str] = None
    step_index: int = 0
    subject: Optional[str] = None
    destination: Optional[str] = None
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    clicked_at: Optional[datetime] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "Message":
        return cls(
            id=str(row["id"]),
            campaign_id=str(row["campaign_id"]),
            customer_id=str(row["customer_id"]),
            channel=Channel(row.get("channel", Channel.SMS.value)),
            body=row.get("body", ""),
            status=MessageStatus(row.get("status", MessageStatus.PENDING.value)),
            recipient_id=row.get("recipient_id"),
            run_id=row.get("run_id"),
            step_index=row.get("step_index") or 0,
            subject=row.get("subject"),
            destination=row.get("destination"),
            external_id=row.get("external_id"),
            error_message=row.get("error_message"),
            created_at=parse_datetime(row.get("created_at")),
            sent_at=parse_datetime(row.get("sent_at")),
            delivered_at=parse_datetime(row.get("delivered_at")),
            failed_at=parse_datetime(row.get("failed_at")),
            opened_at=parse_datetime(row.get("opened_at")),
            clicked_at=parse_datetime(row.get("clicked_at")),
        )


@dataclass
class CampaignRun:
    """Resumo write-once de uma execucao."""

    campaign_id: str
    run_at: datetime
    id: Optional[str] = None
    recipients_found: int = 0
    recipients_enrolled: int = 0
    messages_queued: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "campaign_id": self.campaign_id,
            "run_at": self.run_at.isoformat(),
            "recipients_found": self.recipients_found,
            "recipients_enrolled": self.recipients_enrolled,
            "messages_queued": self.messages_queued,
            "messages_sent": self.messages_sent,
            "messages_failed": self.messages_failed,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }
        if self.id:
            data["id"] = self.id
        return data

    @classmethod
    def from_db_row(cls, row: dict) -> "CampaignRun":
        return cls(
            id=str(row["id"]) if row.get("id") else None,
            campaign_id=str(row["campaign_id"]),
            run_at=parse_datetime(row.get("run_at")),
            recipients_found=row.get("recipients_found") or 0,
            recipients_enrolled=row.get("recipients_enrolled") or 0,
            messages_queued=row.get("messages_queued") or 0,
            messages_sent=row.get("messages_sent") or 0,
            messages_failed=row.get("messages_failed") or 0,
            duration_ms=row.get("duration_ms") or 0,
            error=row.get("error"),
        )


@dataclass
class ConversionEvent:
    """
    Sinal de conversao vindo de outro sistema (pedido, indicacao, agenda).

    Attributes:
        customer_id: Cliente que converteu
        kind: Tipo do evento
        value: Valor monetario (receita atribuida)
        occurred_at: Quando aconteceu; so conta para matriculas anteriores
        reference_id: ID do pedido/indicacao/agendamento de origem
    """

    customer_id: str
    kind: ConversionKind
    occurred_at: datetime
    value: float = 0.0
    reference_id: Optional[str] = None
