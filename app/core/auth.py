"""
Identidade do chamador e protecao dos endpoints de job.

A autenticacao de usuarios fica no gateway da aplicacao administrativa,
que repassa o usuario ja validado nos headers `X-Actor-Id` e
`X-Actor-Role`. Os jobs agendados usam `Authorization: Bearer <CRON_SECRET>`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings

security = HTTPBearer(auto_error=False)


class ActorRole(str, Enum):
    STAFF = "STAFF"
    ADMIN = "ADMIN"


@dataclass
class Actor:
    """Usuario que executa a acao administrativa."""

    id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


async def get_current_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Le o usuario repassado pelo gateway.

    Raises:
        HTTPException: 401 sem identidade, 403 com papel desconhecido
    """
    if not x_actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuario nao identificado")

    try:
        role = ActorRole((x_actor_role or ActorRole.STAFF.value).upper())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Papel invalido")

    return Actor(id=x_actor_id, role=role)


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Admin only."""
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Requer permissao: ADMIN")
    return actor


async def verify_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> None:
    """Sem CRON_SECRET configurado, os jobs ficam abertos (desenvolvimento)."""
    if not settings.CRON_SECRET:
        return
    if credentials is None or credentials.credentials != settings.CRON_SECRET:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
