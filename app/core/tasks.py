"""
Tasks em background (fire-and-forget).

Usado pelo audit log e pela avaliacao de cards de desbloqueio apos um
evento do cliente: a falha da task nunca afeta a acao que a disparou.

O event loop guarda so referencias fracas das tasks, entao as pendentes
ficam em `_pending` ate terminarem.
"""
import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)

_pending: Set[asyncio.Task] = set()

# Falhas por nome de task desde o boot (exposto em /health/tasks)
_task_failures: dict[str, int] = {}


def _failure_key(task_name: str) -> str:
    # "unlock_check:fam-1" e "unlock_check:fam-2" contam juntos
    return task_name.split(":", 1)[0]


async def _run_safely(
    coro: Coroutine,
    task_name: str,
    on_error: Optional[Callable[[Exception], None]],
) -> Any:
    try:
        return await coro
    except asyncio.CancelledError:
        logger.debug(f"[tasks] Cancelada: {task_name}")
        raise
    except Exception as e:
        key = _failure_key(task_name)
        _task_failures[key] = _task_failures.get(key, 0) + 1
        logger.error(
            f"[tasks] Falha em '{task_name}': {e}",
            exc_info=True,
            extra={"task_name": task_name, "error_type": type(e).__name__, "total_failures": _task_failures[key]},
        )

        if on_error is not None:
            try:
                on_error(e)
            except Exception as callback_error:
                logger.error(f"[tasks] Erro no on_error de '{task_name}': {callback_error}")
        return None


def safe_create_task(
    coro: Coroutine,
    name: Optional[str] = None,
    on_error: Optional[Callable[[Exception], None]] = None,
) -> asyncio.Task:
    """
    Agenda a coroutine sem propagar excecao.

    Uso:
        safe_create_task(check_and_unlock_cards(family_id), name=f"unlock_check:{family_id}")

    Returns:
        Task cujo resultado e None em caso de erro
    """
    task_name = name or getattr(coro, "__qualname__", "unknown")
    task = asyncio.create_task(_run_safely(coro, task_name, on_error), name=task_name)
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


def pending_task_count() -> int:
    return len(_pending)


def get_task_failure_counts() -> dict[str, int]:
    return dict(_task_failures)


def reset_task_failure_counts():
    """Usado pelos testes."""
    _task_failures.clear()
