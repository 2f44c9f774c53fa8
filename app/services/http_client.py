"""
HTTP Client Singleton com connection pooling.

Usado pelo transporte de mensagens (gateway SMS/email).
Fechado no shutdown da aplicação.
"""

import httpx
import logging
from typing import Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None


async def get_http_client() -> httpx.AsyncClient:
    """
    Obtém o cliente HTTP singleton, criando na primeira chamada.

    Returns:
        httpx.AsyncClient configurado com pooling
    """
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.TRANSPORT_TIMEOUT, connect=5.0),
            limits=httpx.Limits(
                max_connections=50,
                max_keepalive_connections=10,
                keepalive_expiry=30.0,
            ),
            headers={"User-Agent": "MintVision-Marketing/1.0"},
        )
        logger.info("HTTP client singleton criado")

    return _client


async def close_http_client() -> None:
    """Fecha o cliente HTTP (shutdown da aplicação)."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("HTTP client singleton fechado")
