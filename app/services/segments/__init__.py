"""
Modulo de segmentacao de clientes.

Estrutura:
- types: Operadores, criterios e definicao de segmento
- aggregates: Snapshot do cliente e estrategias de avaliacao
- fields: Registro imutavel de campos
- compiler: Compilacao e avaliacao de segmentos
- presets: Segmentos padrao por tipo de campanha
- repository: Leitura em lote da populacao
"""
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.compiler import CompiledSegment, PushdownFilter, compile_segment
from app.services.segments.fields import (
    SEGMENT_FIELDS,
    FieldDefinition,
    get_field_definition,
    list_fields,
    resolve,
)
from app.services.segments.presets import get_segment_preset
from app.services.segments.types import (
    Channel,
    Operator,
    SegmentCriterion,
    SegmentDefinition,
    ValueType,
)

__all__ = [
    "Channel",
    "CompiledSegment",
    "CustomerSnapshot",
    "FieldDefinition",
    "Operator",
    "PushdownFilter",
    "SEGMENT_FIELDS",
    "SegmentCriterion",
    "SegmentDefinition",
    "ValueType",
    "compile_segment",
    "get_field_definition",
    "get_segment_preset",
    "list_fields",
    "resolve",
]
