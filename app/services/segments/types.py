"""
Tipos e enums da segmentacao de clientes.

Um segmento e a conjuncao (AND) de criterios `(field, operator, value)`,
mais as guardas de audiencia (opt-out, canal exigido, contato recente).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class Operator(str, Enum):
    """Operadores de comparacao de um criterio."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    BETWEEN = "between"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"


# Operadores que comparam contra um escalar
SCALAR_OPERATORS = frozenset(
    {Operator.EQ, Operator.NEQ, Operator.GT, Operator.GTE, Operator.LT, Operator.LTE, Operator.CONTAINS}
)
# Operadores que recebem lista
LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
# Operadores sem valor
NULLARY_OPERATORS = frozenset({Operator.IS_NULL, Operator.IS_NOT_NULL})
# Operadores de ordem (exigem valor ordenavel)
ORDERING_OPERATORS = frozenset(
    {Operator.GT, Operator.GTE, Operator.LT, Operator.LTE, Operator.BETWEEN}
)


class ValueType(str, Enum):
    """Tipo do valor produzido por um campo."""

    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    STRING = "string"
    ENUM = "enum"


class Channel(str, Enum):
    """Canal de contato com o cliente."""

    SMS = "SMS"
    EMAIL = "EMAIL"


@dataclass
class SegmentCriterion:
    """Um criterio `(field, operator, value)` ainda nao validado."""

    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict) -> "SegmentCriterion":
        """
        Cria a partir de dicionario.

        Regras antigas guardavam `between` como `value` + `value2`;
        nesse formato os dois viram a lista `[value, value2]`.
        """
        value = data.get("value")
        if data.get("operator") == Operator.BETWEEN.value and "value2" in data:
            value = [value, data.get("value2")]
        return cls(
            field=data.get("field", ""),
            operator=data.get("operator", ""),
            value=value,
        )


@dataclass
class SegmentDefinition:
    """Definicao completa do publico de uma campanha."""

    criteria: List[SegmentCriterion] = field(default_factory=list)
    exclude_marketing_opt_out: bool = True
    exclude_recently_contacted_days: Optional[int] = None
    require_channel: Optional[Channel] = None

    def to_dict(self) -> dict:
        """Converte para dicionario (coluna JSON `segment` da campanha)."""
        return {
            "criteria": [c.to_dict() for c in self.criteria],
            "exclude_marketing_opt_out": self.exclude_marketing_opt_out,
            "exclude_recently_contacted_days": self.exclude_recently_contacted_days,
            "require_channel": self.require_channel.value if self.require_channel else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SegmentDefinition":
        """Cria a partir de dicionario. Aceita tambem a lista pura de criterios."""
        if not data:
            return cls()
        if isinstance(data, list):
            return cls(criteria=[SegmentCriterion.from_dict(c) for c in data])

        channel = data.get("require_channel")
        return cls(
            criteria=[SegmentCriterion.from_dict(c) for c in data.get("criteria", [])],
            exclude_marketing_opt_out=data.get("exclude_marketing_opt_out", True),
            exclude_recently_contacted_days=data.get("exclude_recently_contacted_days"),
            require_channel=Channel(channel) if channel else None,
        )
