"""
Registro de campos de segmento.

Catalogo fechado e imutavel de campos nomeados e tipados. Cada campo
declara os operadores aceitos e a estrategia de avaliacao (atributo
direto ou agregado nomeado, ver `aggregates.py`).

O registro e montado uma unica vez no import via `register_field()`,
o unico ponto de extensao. Depois disso so existe leitura
(`resolve`, `get_field_definition`, `list_fields`).
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from app.core.config import CampaignsConfig
from app.core.exceptions import UnknownSegmentFieldError
from app.services.segments.aggregates import (
    AttributePath,
    CountOf,
    DaysSinceLatest,
    DaysUntilLatest,
    ExistsIn,
    ExistsWithout,
    FirstValue,
    HasFamilyMembers,
    LatestValue,
    MaxOf,
    MonthOf,
    Scope,
    SumOf,
    YearsSince,
)
from app.services.segments.types import Operator, ValueType

EvaluationStrategy = Union[
    AttributePath,
    YearsSince,
    MonthOf,
    CountOf,
    SumOf,
    MaxOf,
    DaysSinceLatest,
    DaysUntilLatest,
    LatestValue,
    ExistsIn,
    ExistsWithout,
    FirstValue,
    HasFamilyMembers,
]


@dataclass(frozen=True)
class FieldDefinition:
    """Definicao imutavel de um campo de segmento."""

    name: str
    label: str
    description: str
    value_type: ValueType
    operators: frozenset
    evaluation: EvaluationStrategy
    options: Optional[frozenset] = None

    @property
    def is_direct(self) -> bool:
        return self.evaluation.direct

    def allows(self, operator: Operator) -> bool:
        return operator in self.operators

    def to_dict(self) -> Dict[str, Any]:
        """Formato consumido pelo construtor de segmentos da UI."""
        return {
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "type": self.value_type.value,
            "operators": sorted(op.value for op in self.operators),
            **({"options": sorted(self.options)} if self.options else {}),
        }


_fields: Dict[str, FieldDefinition] = {}
_sealed = False


def register_field(
    name: str,
    label: str,
    description: str,
    value_type: ValueType,
    operators: List[Operator],
    evaluation: EvaluationStrategy,
    options: Optional[Iterable[str]] = None,
) -> FieldDefinition:
    """
    Registra um campo no catalogo.

    Raises:
        RuntimeError: Se o registro ja foi selado (apos o import)
        ValueError: Se o nome ja estiver registrado
    """
    if _sealed:
        raise RuntimeError(f"Registro de campos selado, nao e possivel adicionar {name}")
    if name in _fields:
        raise ValueError(f"Campo de segmento duplicado: {name}")

    definition = FieldDefinition(
        name=name,
        label=label,
        description=description,
        value_type=value_type,
        operators=frozenset(operators),
        evaluation=evaluation,
        options=frozenset(options) if options else None,
    )
    _fields[name] = definition
    return definition


_NUMERIC = [Operator.GT, Operator.GTE, Operator.LT, Operator.LTE, Operator.BETWEEN]

_PICKED_UP = Scope("orders", equals=(("status", "PICKED_UP"),))
_ACTIVE_RX = Scope("prescriptions", equals=(("is_active", True),))
_ACTIVE_INSURANCE = Scope("insurance_policies", equals=(("is_active", True),))


# -- Cliente ------------------------------------------------------------------

register_field(
    "age", "Customer Age", "Age in years based on date of birth",
    ValueType.NUMBER, _NUMERIC, YearsSince("date_of_birth"),
)
register_field(
    "birthdayMonth", "Birthday Month", "Month number of customer's birthday (1-12)",
    ValueType.NUMBER, [Operator.EQ, Operator.IN], MonthOf("date_of_birth"),
)
register_field(
    "gender", "Gender", "Customer gender",
    ValueType.ENUM, [Operator.EQ, Operator.IN], AttributePath("gender"),
    options=("MALE", "FEMALE", "OTHER", "PREFER_NOT_TO_SAY"),
)
register_field(
    "city", "City", "Customer city",
    ValueType.STRING, [Operator.EQ, Operator.CONTAINS], AttributePath("city"),
)
register_field(
    "tags", "Customer Tags", "Custom tags applied to the customer",
    ValueType.STRING, [Operator.CONTAINS, Operator.IN], AttributePath("tags", is_list=True),
)
register_field(
    "isOnboarded", "Is Onboarded", "Whether customer has completed intake forms",
    ValueType.BOOLEAN, [Operator.EQ], AttributePath("is_onboarded"),
)

# -- Pedidos ------------------------------------------------------------------

register_field(
    "lifetimeOrderCount", "Lifetime Order Count", "Total number of completed orders",
    ValueType.NUMBER, _NUMERIC + [Operator.EQ], CountOf(_PICKED_UP),
)
register_field(
    "lifetimeSpend", "Lifetime Spend", "Total spend across all picked up orders ($CAD)",
    ValueType.NUMBER, _NUMERIC, SumOf(_PICKED_UP, "total_real"),
)
register_field(
    "daysSinceLastOrder", "Days Since Last Order", "Days since most recent picked up order",
    ValueType.NUMBER, _NUMERIC, DaysSinceLatest(_PICKED_UP, "picked_up_at"),
)
register_field(
    "hasOrderInLastDays", "Has Order In Last N Days",
    "Days since the most recent non-draft, non-cancelled order was created "
    "(lt N: ordered within N days)",
    ValueType.NUMBER, [Operator.LT, Operator.GT],
    DaysSinceLatest(
        Scope("orders", excludes=(("status", ("DRAFT", "CANCELLED")),)), "created_at"
    ),
)
register_field(
    "orderFrameBrand", "Last Frame Brand", "Brand of frame from most recent order",
    ValueType.STRING, [Operator.EQ, Operator.CONTAINS],
    LatestValue(_PICKED_UP, "frame_brand", order_by="picked_up_at"),
)

# -- Exames -------------------------------------------------------------------

register_field(
    "daysSinceLastExam", "Days Since Last Exam", "Days since most recent eye exam",
    ValueType.NUMBER, _NUMERIC, DaysSinceLatest(Scope("exams"), "exam_date"),
)
register_field(
    "hasExam", "Has Exam on Record", "Customer has at least one exam recorded",
    ValueType.BOOLEAN, [Operator.EQ], ExistsIn(Scope("exams")),
)

# -- Receitas -----------------------------------------------------------------

register_field(
    "rxExpiresInDays", "Rx Expires In Days", "Days until current prescription expires",
    ValueType.NUMBER, _NUMERIC, DaysUntilLatest(_ACTIVE_RX, "expiry_date"),
)
register_field(
    "rxType", "Rx Type", "Type of most recent active prescription",
    ValueType.ENUM, [Operator.EQ], LatestValue(_ACTIVE_RX, "type", order_by="date"),
)

# -- Familia ------------------------------------------------------------------

register_field(
    "hasFamilyMembers", "Has Family Members", "Customer belongs to a family group",
    ValueType.BOOLEAN, [Operator.EQ], HasFamilyMembers(),
)

# -- Seguro -------------------------------------------------------------------

register_field(
    "insuranceRenewalMonth", "Insurance Renewal Month", "Month when insurance renews (1-12)",
    ValueType.NUMBER, [Operator.EQ, Operator.IN], MaxOf(_ACTIVE_INSURANCE, "renewal_month"),
)
register_field(
    "hasActiveInsurance", "Has Active Insurance", "Customer has an active insurance policy",
    ValueType.BOOLEAN, [Operator.EQ], ExistsIn(_ACTIVE_INSURANCE),
)

# -- Walk-ins -----------------------------------------------------------------

register_field(
    "hasWalkinQuoteNoOrder", "Quote Given, No Order",
    "Walk-in with QUOTE_GIVEN outcome but no subsequent order",
    ValueType.BOOLEAN, [Operator.EQ],
    ExistsWithout(
        present=Scope(
            "walkins",
            equals=(("outcome", "QUOTE_GIVEN"),),
            within_days=("visited_at", CampaignsConfig.WALKIN_QUOTE_WINDOW_DAYS),
        ),
        absent=Scope(
            "orders", within_days=("created_at", CampaignsConfig.WALKIN_QUOTE_WINDOW_DAYS)
        ),
    ),
)
register_field(
    "daysSinceWalkin", "Days Since Last Walk-in", "Days since last walk-in visit",
    ValueType.NUMBER, _NUMERIC, DaysSinceLatest(Scope("walkins"), "visited_at"),
)

# -- Ficha medica -------------------------------------------------------------

register_field(
    "primaryUse", "Primary Use (Medical History)",
    "Primary use case from medical history (computer, driving, sports, etc.)",
    ValueType.STRING, [Operator.EQ, Operator.CONTAINS, Operator.IS_NULL, Operator.IS_NOT_NULL],
    FirstValue("medical_histories", "primary_use"),
)
register_field(
    "wearsContacts", "Wears Contact Lenses", "Customer is a contact lens wearer",
    ValueType.BOOLEAN, [Operator.EQ],
    FirstValue("medical_histories", "wears_contacts", default=False),
)


SEGMENT_FIELDS: Mapping[str, FieldDefinition] = MappingProxyType(_fields)
_sealed = True


def resolve(field_name: str) -> Optional[FieldDefinition]:
    """Busca a definicao do campo. None se nao existir."""
    return SEGMENT_FIELDS.get(field_name)


def get_field_definition(field_name: str) -> FieldDefinition:
    """
    Busca a definicao do campo.

    Raises:
        UnknownSegmentFieldError: Se o campo nao existir
    """
    definition = resolve(field_name)
    if definition is None:
        raise UnknownSegmentFieldError(field_name)
    return definition


def list_fields() -> List[Dict[str, Any]]:
    """Catalogo completo para o construtor de segmentos."""
    return [definition.to_dict() for definition in SEGMENT_FIELDS.values()]
