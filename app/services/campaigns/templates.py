"""
Templates de mensagem.

Sintaxe `{{variavel}}`. Variavel desconhecida fica como esta no texto,
para o autor perceber o erro no preview.
"""
import re
from datetime import date, datetime
from typing import Dict, Optional

from app.core.config import settings
from app.core.timezone import para_loja, parse_datetime
from app.services.segments.aggregates import CustomerSnapshot

TEMPLATE_VARIABLES = [
    ("firstName", "First Name"),
    ("lastName", "Last Name"),
    ("fullName", "Full Name"),
    ("phone", "Phone Number"),
    ("email", "Email Address"),
    ("frameBrand", "Last Frame Brand"),
    ("frameModel", "Last Frame Model"),
    ("orderDate", "Last Order Date"),
    ("rxExpiryDate", "Prescription Expiry Date"),
    ("insuranceProvider", "Insurance Provider"),
    ("insuranceRenewalMonth", "Insurance Renewal Month"),
    ("examDate", "Last Exam Date"),
    ("referralCode", "Referral Code"),
    ("storeName", "Store Name"),
    ("storePhone", "Store Phone"),
]

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")
_DATA_PURA = re.compile(r"\d{4}-\d{2}-\d{2}")


def _data_local(valor) -> str:
    """
    Data no formato en-CA (YYYY-MM-DD).

    Timestamps vao para o fuso da loja. Colunas `date` (exam_date,
    expiry_date) nao tem fuso e saem como estao.
    """
    if isinstance(valor, date) and not isinstance(valor, datetime):
        return valor.isoformat()
    if isinstance(valor, str) and _DATA_PURA.fullmatch(valor.strip()):
        return valor.strip()
    dt = parse_datetime(valor)
    return para_loja(dt).strftime("%Y-%m-%d") if dt else ""


def _mais_recente(rows, column: str) -> Optional[dict]:
    datadas = [(parse_datetime(r.get(column)), r) for r in rows]
    datadas = [(quando, r) for quando, r in datadas if quando is not None]
    if not datadas:
        return None
    return max(datadas, key=lambda item: item[0])[1]


def resolve_variables(customer: Optional[CustomerSnapshot]) -> Dict[str, str]:
    """
    Monta as variaveis de template de um cliente.

    Usa o pedido retirado mais recente, a receita ativa mais recente,
    o seguro ativo mais recente, o ultimo exame e a ultima indicacao
    feita pelo cliente (codigo de indicacao).
    """
    variables = {key: "" for key, _ in TEMPLATE_VARIABLES}
    variables["storeName"] = settings.STORE_NAME
    variables["storePhone"] = settings.STORE_PHONE

    if customer is None:
        return variables

    pedido = _mais_recente(
        [o for o in customer.rows("orders") if o.get("status") == "PICKED_UP"], "picked_up_at"
    )
    receita = _mais_recente(
        [p for p in customer.rows("prescriptions") if p.get("is_active")], "date"
    )
    seguro = _mais_recente(
        [i for i in customer.rows("insurance_policies") if i.get("is_active")], "created_at"
    )
    exame = _mais_recente(customer.rows("exams"), "exam_date")
    indicacao = _mais_recente(customer.rows("referrals_given"), "created_at")

    renewal_month = (seguro or {}).get("renewal_month")

    variables.update(
        {
            "firstName": customer.get("first_name") or "",
            "lastName": customer.get("last_name") or "",
            "fullName": customer.full_name,
            "phone": customer.get("phone") or "",
            "email": customer.get("email") or "",
            "frameBrand": (pedido or {}).get("frame_brand") or "",
            "frameModel": (pedido or {}).get("frame_model") or "",
            "orderDate": _data_local((pedido or {}).get("picked_up_at")),
            "rxExpiryDate": _data_local((receita or {}).get("expiry_date")),
            "insuranceProvider": (seguro or {}).get("provider_name") or "",
            "insuranceRenewalMonth": MONTH_NAMES[(int(renewal_month) - 1) % 12] if renewal_month else "",
            "examDate": _data_local((exame or {}).get("exam_date")),
            "referralCode": (indicacao or {}).get("code") or "",
        }
    )
    return variables


def interpolate(template: str, variables: Dict[str, str]) -> str:
    """Substitui `{{chave}}` pelos valores conhecidos."""
    return _PLACEHOLDER.sub(
        lambda match: variables.get(match.group(1), match.group(0)),
        template,
    )
