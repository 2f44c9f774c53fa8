"""
Tipos dos cards de desbloqueio da familia.

Regras de gatilho (campo `trigger_rule` jsonb do card):
    {"type": "STYLE_QUIZ_COMPLETED"}
    {"type": "REFERRAL_COUNT", "threshold": 2}
    {"type": "ORDER_COUNT", "threshold": 3}
    {"type": "APPOINTMENT_BOOKED"}
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from app.core.timezone import parse_datetime


class UnlockCardStatus(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


class TriggerType(str, Enum):
    STYLE_QUIZ_COMPLETED = "STYLE_QUIZ_COMPLETED"
    REFERRAL_COUNT = "REFERRAL_COUNT"
    ORDER_COUNT = "ORDER_COUNT"
    APPOINTMENT_BOOKED = "APPOINTMENT_BOOKED"


@dataclass(frozen=True)
class StyleQuizCompleted:
    """Algum membro ativo da familia tem perfil de estilo."""

    type = TriggerType.STYLE_QUIZ_COMPLETED


@dataclass(frozen=True)
class ReferralCount:
    """Indicacoes QUALIFIED/REWARDED feitas por membros >= threshold."""

    threshold: int
    type = TriggerType.REFERRAL_COUNT


@dataclass(frozen=True)
class OrderCount:
    """Pedidos PICKED_UP de membros >= threshold."""

    threshold: int
    type = TriggerType.ORDER_COUNT


@dataclass(frozen=True)
class AppointmentBooked:
    """Algum membro tem consulta futura SCHEDULED/CONFIRMED."""

    type = TriggerType.APPOINTMENT_BOOKED


TriggerRule = Union[StyleQuizCompleted, ReferralCount, OrderCount, AppointmentBooked]


def parse_trigger_rule(data: Optional[dict]) -> Optional[TriggerRule]:
    """
    Converte o jsonb do card em regra tipada.

    Returns:
        TriggerRule, ou None se ausente ou invalida (card nao e avaliado)
    """
    if not isinstance(data, dict):
        return None

    try:
        tipo = TriggerType(data.get("type"))
    except ValueError:
        return None

    if tipo == TriggerType.STYLE_QUIZ_COMPLETED:
        return StyleQuizCompleted()
    if tipo == TriggerType.APPOINTMENT_BOOKED:
        return AppointmentBooked()

    threshold = data.get("threshold")
    if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold < 1:
        return None
    if tipo == TriggerType.REFERRAL_COUNT:
        return ReferralCount(threshold=threshold)
    return OrderCount(threshold=threshold)


@dataclass
class RuleResult:
    """Resultado da avaliacao de uma regra. `progress` None = regra sem contagem."""

    met: bool
    progress: Optional[int] = None


@dataclass
class UnlockCard:
    """Card de recompensa de uma familia."""

    id: str
    family_id: str
    title: str
    status: UnlockCardStatus = UnlockCardStatus.LOCKED
    type: str = ""
    customer_id: Optional[str] = None
    description: Optional[str] = None
    value: Optional[float] = None
    value_type: Optional[str] = None
    trigger_rule: Optional[TriggerRule] = None
    raw_trigger_rule: Optional[dict] = None
    progress: int = 0
    progress_goal: Optional[int] = None
    unlocked_at: Optional[datetime] = None
    unlocked_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_db_row(cls, row: dict) -> "UnlockCard":
        return cls(
            id=str(row["id"]),
            family_id=str(row["family_id"]),
            title=row.get("title", ""),
            status=UnlockCardStatus(row.get("status", UnlockCardStatus.LOCKED.value)),
            type=row.get("type") or "",
            customer_id=row.get("customer_id"),
            description=row.get("description"),
            value=float(row["value"]) if row.get("value") is not None else None,
            value_type=row.get("value_type"),
            trigger_rule=parse_trigger_rule(row.get("trigger_rule")),
            raw_trigger_rule=row.get("trigger_rule"),
            progress=row.get("progress") or 0,
            progress_goal=row.get("progress_goal"),
            unlocked_at=parse_datetime(row.get("unlocked_at")),
            unlocked_by=row.get("unlocked_by"),
            claimed_at=parse_datetime(row.get("claimed_at")),
            expires_at=parse_datetime(row.get("expires_at")),
        )

    def to_dict(self) -> dict:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "family_id": self.family_id,
            "customer_id": self.customer_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "value": self.value,
            "value_type": self.value_type,
            "progress": self.progress,
            "progress_goal": self.progress_goal,
            "unlocked_at": iso(self.unlocked_at),
            "unlocked_by": self.unlocked_by,
            "claimed_at": iso(self.claimed_at),
            "expires_at": iso(self.expires_at),
        }


@dataclass
class UnlockEvaluation:
    """Resumo de uma avaliacao de gatilhos de uma familia."""

    family_id: str
    evaluated: int = 0
    unlocked: int = 0
    progressed: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "family_id": self.family_id,
            "evaluated": self.evaluated,
            "unlocked": self.unlocked,
            "progressed": self.progressed,
            "errors": self.errors,
        }
