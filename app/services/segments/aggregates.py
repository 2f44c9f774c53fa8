"""
Snapshot de cliente e estrategias de avaliacao de campos.

Cada campo do registro aponta para UMA estrategia:
- Atributo direto do cliente (`AttributePath`, `YearsSince`, `MonthOf`):
  barato, avaliado primeiro, e `AttributePath` pode ir para o banco.
- Agregado nomeado sobre uma relacao escopada (`CountOf`, `SumOf`,
  `DaysSinceLatest`, ...): calculado em memoria a partir das relacoes
  carregadas junto com o cliente na leitura em lote.

Nenhuma estrategia monta SQL. Todas recebem o mesmo `now` da execucao.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.core.timezone import SEGUNDOS_POR_DIA, dias_entre, parse_datetime
from app.services.segments.types import Channel


# Relacoes carregadas com o cliente
RELATIONS = (
    "orders",
    "exams",
    "prescriptions",
    "insurance_policies",
    "walkins",
    "medical_histories",
    "referrals_given",
)


@dataclass
class CustomerSnapshot:
    """Cliente com as relacoes necessarias para segmentacao."""

    id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    relations: Dict[str, List[dict]] = field(default_factory=dict)
    family_member_count: int = 0
    last_contacted_at: Optional[datetime] = None

    def get(self, column: str) -> Any:
        return self.attributes.get(column)

    def rows(self, relation: str) -> List[dict]:
        return self.relations.get(relation) or []

    @property
    def full_name(self) -> str:
        partes = [self.get("first_name"), self.get("last_name")]
        return " ".join(p for p in partes if p)

    def address_for(self, channel: Channel) -> Optional[str]:
        """Telefone (SMS) ou email (EMAIL) do cliente."""
        column = "phone" if channel == Channel.SMS else "email"
        return self.get(column) or None

    def can_receive(self, channel: Channel) -> bool:
        """Opt-in no canal e endereco preenchido."""
        opt_in = "sms_opt_in" if channel == Channel.SMS else "email_opt_in"
        return bool(self.get(opt_in)) and self.address_for(channel) is not None

    @classmethod
    def from_db_row(cls, row: dict) -> "CustomerSnapshot":
        """
        Cria snapshot a partir da linha do Supabase com relacoes embutidas.

        Formato esperado (select com embeds):
            {"id": ..., "first_name": ..., "orders": [...], "exams": [...],
             "family": {"members": [{"id": ...}, ...]},
             "messages": [{"created_at": ...}]}
        """
        attributes = dict(row)
        relations = {}
        for name in RELATIONS:
            value = attributes.pop(name, None)
            if isinstance(value, dict):
                value = [value]
            relations[name] = value or []

        family = attributes.pop("family", None) or {}
        members = family.get("members") or []
        family_member_count = len([m for m in members if m.get("id") != row.get("id")])

        messages = attributes.pop("messages", None) or []
        contatos = [parse_datetime(m.get("created_at")) for m in messages]
        contatos = [c for c in contatos if c is not None]

        return cls(
            id=str(row["id"]),
            attributes=attributes,
            relations=relations,
            family_member_count=family_member_count,
            last_contacted_at=max(contatos) if contatos else None,
        )


# =============================================================================
# Escopo de relacao
# =============================================================================


@dataclass(frozen=True)
class Scope:
    """
    Subconjunto de uma relacao do cliente.

    Attributes:
        relation: Nome da relacao (orders, exams, ...)
        equals: Pares (coluna, valor) exigidos
        excludes: Pares (coluna, valores) proibidos
        within_days: (coluna, dias) - so linhas dos ultimos N dias
    """

    relation: str
    equals: Tuple[Tuple[str, Any], ...] = ()
    excludes: Tuple[Tuple[str, Tuple[Any, ...]], ...] = ()
    within_days: Optional[Tuple[str, int]] = None

    def select(self, snapshot: CustomerSnapshot, now: datetime) -> List[dict]:
        selecionadas = []
        for row in snapshot.rows(self.relation):
            if any(row.get(col) != val for col, val in self.equals):
                continue
            if any(row.get(col) in vals for col, vals in self.excludes):
                continue
            if self.within_days:
                col, dias = self.within_days
                quando = parse_datetime(row.get(col))
                if quando is None or (now - quando).total_seconds() > dias * SEGUNDOS_POR_DIA:
                    continue
            selecionadas.append(row)
        return selecionadas


def _datas(rows: List[dict], column: str) -> List[datetime]:
    valores = [parse_datetime(r.get(column)) for r in rows]
    return [v for v in valores if v is not None]


# =============================================================================
# Estrategias diretas (atributo do cliente)
# =============================================================================


@dataclass(frozen=True)
class AttributePath:
    """Coluna direta de `customers`. Pode ser filtrada no banco."""

    column: str
    is_list: bool = False

    direct = True

    @property
    def pushdown_column(self) -> Optional[str]:
        return None if self.is_list else self.column

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Any:
        return snapshot.get(self.column)


@dataclass(frozen=True)
class YearsSince:
    """Anos completos desde a data da coluna (idade)."""

    column: str

    direct = True
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Optional[int]:
        inicio = parse_datetime(snapshot.get(self.column))
        if inicio is None:
            return None
        anos = now.year - inicio.year
        if (now.month, now.day) < (inicio.month, inicio.day):
            anos -= 1
        return anos


@dataclass(frozen=True)
class MonthOf:
    """Mes (1-12) da data da coluna."""

    column: str

    direct = True
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Optional[int]:
        valor = parse_datetime(snapshot.get(self.column))
        return valor.month if valor else None


# =============================================================================
# Agregados nomeados sobre relacoes
# =============================================================================


@dataclass(frozen=True)
class CountOf:
    scope: Scope

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> int:
        return len(self.scope.select(snapshot, now))


@dataclass(frozen=True)
class SumOf:
    scope: Scope
    column: str

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> float:
        return float(sum((r.get(self.column) or 0) for r in self.scope.select(snapshot, now)))


@dataclass(frozen=True)
class MaxOf:
    scope: Scope
    column: str

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Any:
        valores = [r.get(self.column) for r in self.scope.select(snapshot, now)]
        valores = [v for v in valores if v is not None]
        return max(valores) if valores else None


@dataclass(frozen=True)
class DaysSinceLatest:
    """Dias desde a data mais recente da coluna no escopo."""

    scope: Scope
    column: str

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Optional[int]:
        datas = _datas(self.scope.select(snapshot, now), self.column)
        return dias_entre(max(datas), now) if datas else None


@dataclass(frozen=True)
class DaysUntilLatest:
    """Dias ate a data mais distante da coluna no escopo (negativo se ja passou)."""

    scope: Scope
    column: str

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Optional[int]:
        datas = _datas(self.scope.select(snapshot, now), self.column)
        return dias_entre(now, max(datas)) if datas else None


@dataclass(frozen=True)
class LatestValue:
    """Valor de `column` na linha mais recente por `order_by`."""

    scope: Scope
    column: str
    order_by: str

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Any:
        rows = [
            (parse_datetime(r.get(self.order_by)), r)
            for r in self.scope.select(snapshot, now)
        ]
        rows = [(quando, r) for quando, r in rows if quando is not None]
        if not rows:
            return None
        return max(rows, key=lambda item: item[0])[1].get(self.column)


@dataclass(frozen=True)
class ExistsIn:
    scope: Scope

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> bool:
        return bool(self.scope.select(snapshot, now))


@dataclass(frozen=True)
class ExistsWithout:
    """Existe linha em `present` e nenhuma em `absent`."""

    present: Scope
    absent: Scope

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> bool:
        return bool(self.present.select(snapshot, now)) and not self.absent.select(snapshot, now)


@dataclass(frozen=True)
class FirstValue:
    """
    Valor de uma relacao 1:1 (ex: ficha medica).

    Sem linha na relacao o valor e None. `default` so substitui coluna
    nula de uma linha existente.
    """

    relation: str
    column: str
    default: Any = None

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> Any:
        rows = snapshot.rows(self.relation)
        if not rows:
            return None
        valor = rows[0].get(self.column)
        return self.default if valor is None else valor


@dataclass(frozen=True)
class HasFamilyMembers:
    """Cliente pertence a uma familia com outros membros."""

    direct = False
    pushdown_column = None

    def compute(self, snapshot: CustomerSnapshot, now: datetime) -> bool:
        return bool(snapshot.get("family_id")) and snapshot.family_member_count > 0
