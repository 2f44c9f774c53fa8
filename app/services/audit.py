"""
Audit log de acoes administrativas.

`record()` agenda a gravacao em background: a acao auditada nunca espera
nem falha por causa do audit log.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

from app.core.tasks import safe_create_task
from app.core.timezone import iso_utc
from app.services.supabase import supabase

logger = logging.getLogger(__name__)

AUDIT_TABLE = "audit_logs"


class AuditAction(str, Enum):
    """Acoes auditaveis."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS_CHANGE = "STATUS_CHANGE"
    RUN = "RUN"
    OPT_OUT = "OPT_OUT"


async def write_audit_log(
    actor: str,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Grava um registro no audit log.

    Returns:
        ID do registro ou None se falhou
    """
    try:
        registro = {
            "actor": actor,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "changes": changes or {},
            "created_at": iso_utc(),
        }

        result = supabase.table(AUDIT_TABLE).insert(registro).execute()

        if result.data:
            logger.info(
                f"[audit] {action} em {entity_type} por {actor}",
                extra={"audit_id": result.data[0].get("id"), "entity_id": entity_id},
            )
            return result.data[0].get("id")

        return None

    except Exception as e:
        logger.error(f"[audit] FALHA ao registrar: {action} {entity_type} {entity_id} - {e}")
        return None


def record(
    actor: str,
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> Optional[asyncio.Task]:
    """
    Fire-and-forget de write_audit_log.

    Returns:
        Task agendada, ou None fora de um event loop
    """
    if isinstance(action, Enum):
        action = action.value

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        logger.warning(f"[audit] Sem event loop, registro descartado: {action} {entity_type}")
        return None

    return safe_create_task(
        write_audit_log(actor, action, entity_type, entity_id, changes),
        name="audit_log",
    )
