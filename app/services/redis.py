"""
Cliente Redis compartilhado.

So os locks de execucao de campanha usam Redis; nenhum dado de negocio
mora aqui. A conexao e aberta na primeira operacao.
"""
import logging

import redis.asyncio as redis

from app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.REDIS_URL,
    encoding="utf-8",
    decode_responses=True,
    socket_connect_timeout=5,
    health_check_interval=30,
)


async def verificar_conexao_redis() -> bool:
    """PING para o readiness check. Nunca levanta."""
    try:
        return bool(await redis_client.ping())
    except Exception as e:
        logger.error(f"[Redis] Sem conexao em {settings.REDIS_URL.rsplit('@', 1)[-1]}: {e}")
        return False


async def fechar_redis() -> None:
    """Fecha o pool no shutdown da aplicacao."""
    try:
        await redis_client.aclose()
    except Exception as e:
        logger.warning(f"[Redis] Erro ao fechar conexoes: {e}")
