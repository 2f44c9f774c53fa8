"""
Helpers compartilhados pelos sub-routers de jobs.
"""

import functools
import logging
import time
from typing import Any, Callable, Coroutine

from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


def job_endpoint(name: str):
    """
    Decorator dos endpoints de job.

    O handler retorna um dict; o decorator acrescenta o nome do job e a
    duracao. Excecao vira 500 com a mensagem, para o agendador registrar a
    falha e tentar de novo no proximo ciclo.

    Uso:
        @router.post("/expirar-cards")
        @job_endpoint("expirar-cards")
        async def job_expirar_cards():
            return {"status": "ok", "expirados": 3}
    """

    def decorator(
        func: Callable[..., Coroutine[Any, Any, dict]],
    ) -> Callable[..., Coroutine[Any, Any, JSONResponse]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> JSONResponse:
            inicio = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(f"[jobs/{name}] Falhou: {e}", exc_info=True)
                return JSONResponse(
                    {"status": "error", "job": name, "message": str(e)},
                    status_code=500,
                )

            duracao_ms = int((time.monotonic() - inicio) * 1000)
            logger.info(f"[jobs/{name}] Concluido em {duracao_ms}ms")
            return JSONResponse({"job": name, "job_duration_ms": duracao_ms, **result})

        return wrapper

    return decorator
