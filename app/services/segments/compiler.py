"""
Compilador de segmentos.

Transforma a lista de criterios `(field, operator, value)` de uma campanha
em um unico teste de pertinencia (AND de todos os criterios), avaliado em
uma passada sobre a populacao de clientes.

Regras:
- Campo desconhecido, operador nao permitido para o campo ou valor com
  formato/tipo errado falham a compilacao INTEIRA com SegmentCompileError
  nomeando o campo. Um segmento invalido nunca vira "todos" nem "ninguem".
- Criterios diretos (atributos do cliente) rodam antes dos agregados.
- Todos os valores derivados (idade, dias desde X, totais) usam o mesmo
  `now`, capturado na compilacao.
- Valor derivado nulo (ex: cliente sem pedidos em daysSinceLastOrder)
  nunca satisfaz comparacao; so `is_null`.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from numbers import Number
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from app.core.exceptions import SegmentCompileError, UnknownSegmentFieldError
from app.core.timezone import agora_utc, parse_datetime
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.fields import FieldDefinition, resolve
from app.services.segments.types import (
    LIST_OPERATORS,
    NULLARY_OPERATORS,
    Channel,
    Operator,
    SegmentCriterion,
    SegmentDefinition,
    ValueType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PushdownFilter:
    """Filtro aplicavel direto na query de `customers`."""

    column: str
    operator: Operator
    value: Any = None


@dataclass(frozen=True)
class CompiledCriterion:
    """Criterio validado, com valor ja normalizado para o tipo do campo."""

    index: int
    definition: FieldDefinition
    operator: Operator
    value: Any

    @property
    def field(self) -> str:
        return self.definition.name

    def test(self, snapshot: CustomerSnapshot, now: datetime) -> bool:
        actual = self.definition.evaluation.compute(snapshot, now)
        return _apply(self.operator, actual, self.value, self.definition)

    def to_pushdown(self) -> List[PushdownFilter]:
        column = self.definition.evaluation.pushdown_column
        if column is None:
            return []
        if self.operator == Operator.BETWEEN:
            low, high = self.value
            return [
                PushdownFilter(column, Operator.GTE, low),
                PushdownFilter(column, Operator.LTE, high),
            ]
        return [PushdownFilter(column, self.operator, self.value)]


@dataclass(frozen=True)
class CompiledSegment:
    """
    Teste de pertinencia compilado.

    Attributes:
        criteria: Criterios na ordem de avaliacao (diretos primeiro)
        now: Instante de referencia de todos os valores derivados
    """

    criteria: Tuple[CompiledCriterion, ...]
    now: datetime
    exclude_marketing_opt_out: bool = True
    exclude_recently_contacted_days: Optional[int] = None
    require_channel: Optional[Channel] = None

    def passes_guards(self, snapshot: CustomerSnapshot) -> bool:
        """Guardas de audiencia: ativo, opt-out, canal, contato recente."""
        # Mesma semantica do filtro is_active = true no banco: nulo nao passa
        if snapshot.get("is_active") is not True:
            return False
        if self.exclude_marketing_opt_out and snapshot.get("marketing_opt_out"):
            return False
        if self.require_channel and not snapshot.can_receive(self.require_channel):
            return False
        if self.exclude_recently_contacted_days is not None and snapshot.last_contacted_at:
            elapsed = self.now - snapshot.last_contacted_at
            if elapsed.total_seconds() < self.exclude_recently_contacted_days * 86400:
                return False
        return True

    def matches(self, snapshot: CustomerSnapshot) -> bool:
        if not self.passes_guards(snapshot):
            return False
        return all(criterion.test(snapshot, self.now) for criterion in self.criteria)

    def evaluate(self, population: Iterable[CustomerSnapshot]) -> List[str]:
        """
        Avalia a populacao em uma passada.

        Returns:
            IDs dos clientes que satisfazem o segmento, na ordem da populacao
        """
        return [snapshot.id for snapshot in population if self.matches(snapshot)]

    def pushdown_filters(self) -> List[PushdownFilter]:
        """
        Filtros baratos para a leitura em lote.

        O banco so pode estreitar a populacao; `matches` reavalia tudo.
        """
        filters = [PushdownFilter("is_active", Operator.EQ, True)]
        if self.exclude_marketing_opt_out:
            filters.append(PushdownFilter("marketing_opt_out", Operator.EQ, False))
        if self.require_channel == Channel.SMS:
            filters.append(PushdownFilter("sms_opt_in", Operator.EQ, True))
            filters.append(PushdownFilter("phone", Operator.IS_NOT_NULL))
        elif self.require_channel == Channel.EMAIL:
            filters.append(PushdownFilter("email_opt_in", Operator.EQ, True))
            filters.append(PushdownFilter("email", Operator.IS_NOT_NULL))
        for criterion in self.criteria:
            filters.extend(criterion.to_pushdown())
        return filters

    @property
    def fields(self) -> List[str]:
        return [c.field for c in self.criteria]


CriteriaInput = Union[SegmentDefinition, Sequence[Union[SegmentCriterion, dict]]]


def compile_segment(segment: CriteriaInput, now: Optional[datetime] = None) -> CompiledSegment:
    """
    Compila um segmento.

    Args:
        segment: SegmentDefinition ou lista de criterios (dataclass ou dict)
        now: Instante de referencia (default: agora UTC)

    Returns:
        CompiledSegment pronto para `evaluate`

    Raises:
        SegmentCompileError: Criterio invalido (sempre nomeia o campo)
    """
    if not isinstance(segment, SegmentDefinition):
        segment = SegmentDefinition(
            criteria=[
                c if isinstance(c, SegmentCriterion) else SegmentCriterion.from_dict(c)
                for c in segment
            ]
        )

    recent_days = segment.exclude_recently_contacted_days
    if recent_days is not None and (
        isinstance(recent_days, bool) or not isinstance(recent_days, int) or recent_days < 0
    ):
        raise SegmentCompileError(
            "exclude_recently_contacted_days", "deve ser inteiro nao negativo"
        )

    compiled = [
        _compile_criterion(index, criterion)
        for index, criterion in enumerate(segment.criteria)
    ]
    # sorted e estavel: a ordem do autor se mantem dentro de cada grupo
    compiled.sort(key=lambda c: 0 if c.definition.is_direct else 1)

    return CompiledSegment(
        criteria=tuple(compiled),
        now=now or agora_utc(),
        exclude_marketing_opt_out=segment.exclude_marketing_opt_out,
        exclude_recently_contacted_days=recent_days,
        require_channel=segment.require_channel,
    )


def _compile_criterion(index: int, criterion: SegmentCriterion) -> CompiledCriterion:
    name = criterion.field
    definition = resolve(name)
    if definition is None:
        raise UnknownSegmentFieldError(name, index)

    try:
        operator = Operator(criterion.operator)
    except ValueError:
        raise SegmentCompileError(name, f"operador desconhecido '{criterion.operator}'", index)

    if not definition.allows(operator):
        permitidos = ", ".join(sorted(op.value for op in definition.operators))
        raise SegmentCompileError(
            name, f"operador '{operator.value}' nao permitido (permitidos: {permitidos})", index
        )

    value = _normalize_value(definition, operator, criterion.value, index)
    return CompiledCriterion(index=index, definition=definition, operator=operator, value=value)


def _normalize_value(definition: FieldDefinition, operator: Operator, value: Any, index: int) -> Any:
    name = definition.name

    if operator in NULLARY_OPERATORS:
        if value not in (None, "", []):
            raise SegmentCompileError(name, f"'{operator.value}' nao recebe valor", index)
        return None

    if operator == Operator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise SegmentCompileError(name, "'between' exige lista [min, max]", index)
        low = _coerce(definition, value[0], index)
        high = _coerce(definition, value[1], index)
        if low > high:
            raise SegmentCompileError(name, f"'between' com min > max ({low} > {high})", index)
        return (low, high)

    if operator in LIST_OPERATORS:
        if not isinstance(value, (list, tuple)) or not value:
            raise SegmentCompileError(name, f"'{operator.value}' exige lista nao vazia", index)
        return tuple(_coerce(definition, item, index) for item in value)

    if isinstance(value, (list, tuple, dict)):
        raise SegmentCompileError(name, f"'{operator.value}' exige valor escalar", index)
    return _coerce(definition, value, index)


def _coerce(definition: FieldDefinition, value: Any, index: int) -> Any:
    """Converte o valor para o tipo do campo ou falha nomeando o campo."""
    name = definition.name
    value_type = definition.value_type

    if value is None:
        raise SegmentCompileError(name, "valor ausente", index)

    if value_type == ValueType.NUMBER:
        if isinstance(value, bool):
            raise SegmentCompileError(name, f"esperado numero, recebido {value!r}", index)
        if isinstance(value, Number):
            return value
        if isinstance(value, str):
            try:
                number = float(value)
            except ValueError:
                raise SegmentCompileError(name, f"esperado numero, recebido {value!r}", index)
            return int(number) if number.is_integer() else number
        raise SegmentCompileError(name, f"esperado numero, recebido {value!r}", index)

    if value_type == ValueType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise SegmentCompileError(name, f"esperado booleano, recebido {value!r}", index)

    if value_type == ValueType.DATE:
        try:
            parsed = parse_datetime(value)
        except (ValueError, OverflowError):
            parsed = None
        if parsed is None:
            raise SegmentCompileError(name, f"esperado data ISO 8601, recebido {value!r}", index)
        return parsed

    if not isinstance(value, str) or not value.strip():
        raise SegmentCompileError(name, f"esperado texto, recebido {value!r}", index)
    if definition.options and value not in definition.options:
        permitidos = ", ".join(sorted(definition.options))
        raise SegmentCompileError(name, f"valor {value!r} fora de ({permitidos})", index)
    return value


def _apply(operator: Operator, actual: Any, expected: Any, definition: FieldDefinition) -> bool:
    if definition.value_type == ValueType.DATE and actual is not None:
        actual = parse_datetime(actual)

    if operator == Operator.IS_NULL:
        return actual is None or actual == []
    if operator == Operator.IS_NOT_NULL:
        return not (actual is None or actual == [])
    if actual is None:
        return False

    if isinstance(actual, (list, tuple)):
        return _apply_list(operator, actual, expected)

    if operator == Operator.EQ:
        return actual == expected
    if operator == Operator.NEQ:
        return actual != expected
    if operator == Operator.IN:
        return actual in expected
    if operator == Operator.NOT_IN:
        return actual not in expected
    if operator == Operator.CONTAINS:
        return str(expected).lower() in str(actual).lower()

    try:
        if operator == Operator.GT:
            return actual > expected
        if operator == Operator.GTE:
            return actual >= expected
        if operator == Operator.LT:
            return actual < expected
        if operator == Operator.LTE:
            return actual <= expected
        if operator == Operator.BETWEEN:
            low, high = expected
            return low <= actual <= high
    except TypeError:
        # Dado sujo no banco (ex: texto em coluna numerica) nao casa
        logger.warning(
            f"[SegmentCompiler] Valor incomparavel em {definition.name}: {actual!r}"
        )
        return False

    raise SegmentCompileError(definition.name, f"operador sem avaliacao: {operator.value}")


def _apply_list(operator: Operator, actual: Sequence[Any], expected: Any) -> bool:
    """Campos multivalorados (tags): o criterio vale para algum elemento."""
    if operator == Operator.CONTAINS:
        needle = str(expected).lower()
        return any(needle in str(item).lower() for item in actual)
    if operator == Operator.IN:
        return any(item in expected for item in actual)
    if operator == Operator.NOT_IN:
        return not any(item in expected for item in actual)
    if operator == Operator.EQ:
        return expected in actual
    if operator == Operator.NEQ:
        return expected not in actual
    return False
