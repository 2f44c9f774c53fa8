"""
Módulo centralizado para tratamento de timezone.

O projeto usa:
- UTC para armazenamento no banco de dados e para toda aritmetica de dias
- Fuso da loja (STORE_TIMEZONE) apenas para exibicao em templates

Convenções:
- `agora_utc()`: Para armazenar no banco e para o "agora" de uma execucao
- `para_loja(dt)`: Converter datetime para o fuso da loja
- `parse_datetime(valor)`: Ler timestamps vindos do Supabase
"""

from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from dateutil.parser import isoparse

from app.core.config import settings


# Constantes de timezone
TZ_LOJA = ZoneInfo(settings.STORE_TIMEZONE)
TZ_UTC = timezone.utc

SEGUNDOS_POR_DIA = 86400


def agora_utc() -> datetime:
    """
    Retorna datetime atual em UTC (timezone-aware).

    Returns:
        datetime em UTC com tzinfo
    """
    return datetime.now(TZ_UTC)


def para_loja(dt: datetime) -> datetime:
    """
    Converte datetime para o fuso da loja.

    Args:
        dt: datetime a converter (naive e assumido UTC)

    Returns:
        datetime no fuso STORE_TIMEZONE
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=TZ_UTC)
    return dt.astimezone(TZ_LOJA)


def para_utc(dt: datetime) -> datetime:
    """Converte datetime para UTC. Naive e assumido UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=TZ_UTC)
    return dt.astimezone(TZ_UTC)


def parse_datetime(valor: Any) -> Optional[datetime]:
    """
    Normaliza timestamp do banco para datetime UTC aware.

    Aceita datetime, date (meia-noite UTC) ou string ISO 8601.
    Retorna None para valores vazios.
    """
    if valor is None or valor == "":
        return None
    if isinstance(valor, datetime):
        return para_utc(valor)
    if isinstance(valor, date):
        return datetime(valor.year, valor.month, valor.day, tzinfo=TZ_UTC)
    return para_utc(isoparse(str(valor)))


def dias_entre(inicio: datetime, fim: datetime) -> int:
    """
    Dias inteiros decorridos de `inicio` ate `fim` (truncado).

    Negativo quando `inicio` esta no futuro.
    """
    segundos = (para_utc(fim) - para_utc(inicio)).total_seconds()
    return int(segundos // SEGUNDOS_POR_DIA) if segundos >= 0 else -int(-segundos // SEGUNDOS_POR_DIA)


def iso_utc(dt: datetime | None = None) -> str:
    """
    Retorna datetime em formato ISO 8601 UTC.

    Args:
        dt: datetime a formatar (padrão: agora)
    """
    if dt is None:
        dt = agora_utc()
    return para_utc(dt).isoformat()
