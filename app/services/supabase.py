"""
Cliente Supabase para operacoes de banco de dados.
"""
from supabase import create_client, Client
from functools import lru_cache
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Retorna cliente Supabase cacheado.
    Usa service key para acesso completo.
    """
    if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
        raise ValueError("SUPABASE_URL e SUPABASE_SERVICE_KEY sao obrigatorios")

    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY
    )


# Instancia global (repositories aceitam outro client por injecao)
supabase = get_supabase_client()


def verificar_conexao_supabase() -> bool:
    """Verifica se o Supabase responde (usado pelo /health)."""
    try:
        supabase.table("campaigns").select("id").limit(1).execute()
        return True
    except Exception as e:
        logger.error(f"Supabase nao acessivel: {e}")
        return False
