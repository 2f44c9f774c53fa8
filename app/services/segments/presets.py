"""
Segmentos padrao por tipo de campanha.

Ponto de partida quando o autor cria uma campanha sem segmento proprio.
So AND: presets que antes combinavam criterios com OU ficaram com o
criterio principal.
"""
from datetime import datetime
from typing import Dict, List, Optional

from app.core.timezone import agora_utc, para_loja
from app.services.segments.types import SegmentCriterion, SegmentDefinition


def _c(field: str, operator: str, value=None) -> SegmentCriterion:
    return SegmentCriterion(field=field, operator=operator, value=value)


# tipo -> (criterios, dias sem contato recente)
_PRESETS: Dict[str, tuple] = {
    "EXAM_REMINDER": ([_c("daysSinceLastExam", "between", [330, 395])], 30),
    "WALKIN_FOLLOWUP": (
        [_c("hasWalkinQuoteNoOrder", "eq", True), _c("daysSinceWalkin", "between", [7, 60])],
        14,
    ),
    "INSURANCE_RENEWAL": (
        [_c("hasActiveInsurance", "eq", True), _c("insuranceRenewalMonth", "in", [10, 11, 12])],
        60,
    ),
    "ONE_TIME_BLAST": ([], None),
    "SECOND_PAIR": (
        [_c("lifetimeOrderCount", "eq", 1), _c("daysSinceLastOrder", "between", [30, 90])],
        30,
    ),
    "PRESCRIPTION_EXPIRY": ([_c("rxExpiresInDays", "between", [0, 30])], 14),
    "ABANDONMENT_RECOVERY": (
        [_c("hasWalkinQuoteNoOrder", "eq", True), _c("daysSinceWalkin", "gte", 7)],
        7,
    ),
    "FAMILY_ADDON": (
        [_c("hasFamilyMembers", "eq", True), _c("lifetimeOrderCount", "gte", 1)],
        90,
    ),
    "INSURANCE_MAXIMIZATION": (
        [
            _c("hasActiveInsurance", "eq", True),
            _c("insuranceRenewalMonth", "in", [10, 11, 12]),
            _c("daysSinceLastOrder", "gt", 300),
        ],
        30,
    ),
    "POST_PURCHASE_REFERRAL": ([_c("daysSinceLastOrder", "between", [2, 7])], 90),
    "VIP_INSIDER": ([_c("lifetimeOrderCount", "gte", 3)], 60),
    "DAMAGE_REPLACEMENT": ([_c("daysSinceLastOrder", "between", [365, 548])], 60),
    "DORMANT_REACTIVATION": ([_c("daysSinceLastOrder", "gte", 730)], 180),
    "COMPETITOR_SWITCHER": (
        [_c("hasExam", "eq", True), _c("lifetimeOrderCount", "eq", 0)],
        30,
    ),
    "LIFESTYLE_MARKETING": ([_c("primaryUse", "is_not_null")], 90),
    "AGING_INVENTORY": ([_c("lifetimeOrderCount", "gte", 1)], 60),
    "NEW_ARRIVAL_VIP": ([_c("lifetimeOrderCount", "gte", 3)], 14),
    "EDUCATIONAL_NURTURE": ([_c("lifetimeOrderCount", "gte", 1)], 90),
    "LENS_EDUCATION": ([_c("lifetimeOrderCount", "gte", 1)], 90),
    "STYLE_EVOLUTION": ([_c("daysSinceLastOrder", "between", [180, 730])], 60),
}


def get_segment_preset(campaign_type: str, now: Optional[datetime] = None) -> SegmentDefinition:
    """
    Segmento padrao para o tipo de campanha.

    BIRTHDAY_ANNIVERSARY usa o mes corrente no fuso da loja.
    Tipos sem preset recebem segmento vazio (todos os contatáveis).
    """
    if campaign_type == "BIRTHDAY_ANNIVERSARY":
        mes = para_loja(now or agora_utc()).month
        return SegmentDefinition(
            criteria=[_c("birthdayMonth", "eq", mes)],
            exclude_recently_contacted_days=365,
        )

    criteria, recent_days = _PRESETS.get(campaign_type, ([], None))
    return SegmentDefinition(
        criteria=[
            SegmentCriterion(c.field, c.operator, list(c.value) if isinstance(c.value, list) else c.value)
            for c in criteria
        ],
        exclude_recently_contacted_days=recent_days,
    )


def preset_types() -> List[str]:
    return sorted(set(_PRESETS) | {"BIRTHDAY_ANNIVERSARY"})
