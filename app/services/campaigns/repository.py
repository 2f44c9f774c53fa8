"""
Repository para campanhas, destinatarios, mensagens e execucoes.

Leituras e escritas simples usam o query builder. As escritas que precisam
ser atomicas passam por funcoes Postgres (RPC), ver
migrations/001_marketing_core.sql:

- commit_campaign_run: matriculas + mensagens PENDING de uma execucao
- finalize_campaign_message: status da mensagem + avanco do destinatario
- complete_campaign_run: linha de CampaignRun + contadores da campanha
- increment_campaign_counters: contadores de entrega/engajamento/conversao

Leituras que falham retornam None/[] (e logam). Escritas do motor que
falham levantam DatabaseError: a execucao precisa saber que nao gravou.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.core.config import CampaignsConfig
from app.core.exceptions import DatabaseError
from app.core.timezone import agora_utc
from app.services.campaigns.types import (
    Campaign,
    CampaignRecipient,
    CampaignRun,
    CampaignStatus,
    Message,
    MessageStatus,
    RecipientStatus,
)
from app.services.segments.types import Channel
from app.services.supabase import supabase

logger = logging.getLogger(__name__)


@dataclass
class PlannedMessage:
    """Mensagem renderizada no planejamento, ainda nao gravada."""

    customer_id: str
    step_index: int
    channel: Channel
    body: str
    destination: str
    subject: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "step_index": self.step_index,
            "channel": self.channel.value,
            "subject": self.subject,
            "body": self.body,
            "destination": self.destination,
        }


@dataclass
class CommitResult:
    """Retorno de commit_campaign_run."""

    enrolled: int = 0
    messages: List[Message] = field(default_factory=list)


class CampaignRepository:
    """Repository para operacoes de campanhas no banco."""

    TABLE = "campaigns"
    RECIPIENTS_TABLE = "campaign_recipients"
    MESSAGES_TABLE = "messages"
    RUNS_TABLE = "campaign_runs"

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or supabase

    def _fetch_all(self, build_query: Callable[[], Any]) -> List[dict]:
        """
        Le todas as paginas de uma query com .range().

        O PostgREST corta respostas em max-rows sem avisar, entao listas
        que o motor precisa inteiras nunca saem de um unico execute().
        `build_query` devolve uma query nova, com ordem estavel.
        """
        page_size = CampaignsConfig.READ_PAGE_SIZE
        rows: List[dict] = []
        inicio = 0
        while True:
            response = build_query().range(inicio, inicio + page_size - 1).execute()
            pagina = response.data or []
            rows.extend(pagina)
            if len(pagina) < page_size:
                return rows
            inicio += page_size

    # =========================================================================
    # Campanhas
    # =========================================================================

    async def get_by_id(self, campaign_id: str) -> Optional[Campaign]:
        """
        Busca campanha por ID.

        Returns:
            Campaign ou None se nao encontrada
        """
        try:
            response = (
                self.client.table(self.TABLE).select("*").eq("id", campaign_id).limit(1).execute()
            )
            if not response.data:
                return None
            return Campaign.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao buscar campanha {campaign_id}: {e}")
            return None

    async def get_many(self, campaign_ids: Iterable[str]) -> Dict[str, Campaign]:
        """Busca varias campanhas de uma vez, indexadas por id."""
        ids = list(set(campaign_ids))
        if not ids:
            return {}
        try:
            response = self.client.table(self.TABLE).select("*").in_("id", ids).execute()
            campanhas = [Campaign.from_db_row(row) for row in (response.data or [])]
            return {c.id: c for c in campanhas}

        except Exception as e:
            logger.error(f"Erro ao buscar campanhas {ids}: {e}")
            return {}

    async def list(self, status: Optional[str] = None, limit: int = 50) -> List[Campaign]:
        """Lista campanhas, mais recentes primeiro."""
        try:
            query = self.client.table(self.TABLE).select("*")
            if status:
                query = query.eq("status", status)
            response = query.order("created_at", desc=True).limit(limit).execute()
            return [Campaign.from_db_row(row) for row in (response.data or [])]

        except Exception as e:
            logger.error(f"Erro ao listar campanhas: {e}")
            return []

    async def list_active(self) -> List[Campaign]:
        return await self.list(status=CampaignStatus.ACTIVE.value, limit=1000)

    async def create(self, data: Dict[str, Any]) -> Optional[Campaign]:
        """Cria campanha em DRAFT."""
        row = {**data, "status": CampaignStatus.DRAFT.value}
        try:
            response = self.client.table(self.TABLE).insert(row).execute()
            if not response.data:
                return None
            campanha = Campaign.from_db_row(response.data[0])
            logger.info(f"Campanha criada: {campanha.id} - {campanha.name}")
            return campanha

        except Exception as e:
            logger.error(f"Erro ao criar campanha: {e}")
            return None

    async def update_fields(self, campaign_id: str, fields: Dict[str, Any]) -> Optional[Campaign]:
        """Atualiza colunas da campanha e retorna a versao nova."""
        try:
            response = (
                self.client.table(self.TABLE)
                .update({**fields, "updated_at": agora_utc().isoformat()})
                .eq("id", campaign_id)
                .execute()
            )
            if not response.data:
                return None
            return Campaign.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao atualizar campanha {campaign_id}: {e}")
            return None

    async def update_status(self, campaign_id: str, status: CampaignStatus) -> Optional[Campaign]:
        campanha = await self.update_fields(campaign_id, {"status": status.value})
        if campanha:
            logger.info(f"Campanha {campaign_id} -> {status.value}")
        return campanha

    async def delete(self, campaign_id: str) -> bool:
        try:
            response = self.client.table(self.TABLE).delete().eq("id", campaign_id).execute()
            return bool(response.data)

        except Exception as e:
            logger.error(f"Erro ao deletar campanha {campaign_id}: {e}")
            return False

    async def increment_counters(self, campaign_id: str, **deltas: float) -> bool:
        """
        Incrementa contadores de forma atomica.

        Exemplo:
            await repo.increment_counters(cid, total_converted=1, total_revenue=350.0)
        """
        deltas = {k: v for k, v in deltas.items() if v}
        if not deltas:
            return True
        try:
            self.client.rpc(
                "increment_campaign_counters",
                {"p_campaign_id": campaign_id, "p_deltas": deltas},
            ).execute()
            return True

        except Exception as e:
            logger.error(f"Erro ao incrementar contadores da campanha {campaign_id}: {e}")
            return False

    # =========================================================================
    # Destinatarios
    # =========================================================================

    async def list_recipients(
        self,
        campaign_id: str,
        status: Optional[RecipientStatus] = None,
    ) -> List[CampaignRecipient]:
        """
        Lista destinatarios da campanha.

        Raises:
            DatabaseError: O motor precisa da lista completa para nao
                matricular duas vezes.
        """
        def build_query():
            query = self.client.table(self.RECIPIENTS_TABLE).select("*").eq("campaign_id", campaign_id)
            if status:
                query = query.eq("status", status.value)
            return query.order("id")

        try:
            rows = self._fetch_all(build_query)
            return [CampaignRecipient.from_db_row(row) for row in rows]

        except Exception as e:
            logger.error(f"Erro ao listar destinatarios da campanha {campaign_id}: {e}")
            raise DatabaseError("Erro ao listar destinatarios", original_error=e)

    async def get_recipient(self, recipient_id: str) -> Optional[CampaignRecipient]:
        try:
            response = (
                self.client.table(self.RECIPIENTS_TABLE).select("*").eq("id", recipient_id).limit(1).execute()
            )
            if not response.data:
                return None
            return CampaignRecipient.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao buscar destinatario {recipient_id}: {e}")
            return None

    async def list_active_recipients_for_customer(self, customer_id: str) -> List[CampaignRecipient]:
        try:
            response = (
                self.client.table(self.RECIPIENTS_TABLE)
                .select("*")
                .eq("customer_id", customer_id)
                .eq("status", RecipientStatus.ACTIVE.value)
                .execute()
            )
            return [CampaignRecipient.from_db_row(row) for row in (response.data or [])]

        except Exception as e:
            logger.error(f"Erro ao listar matriculas do cliente {customer_id}: {e}")
            return []

    async def enroll(self, campaign_id: str, customer_id: str, at: datetime) -> Optional[CampaignRecipient]:
        """
        Matricula manual. Idempotente pela chave unica (campanha, cliente).

        Returns:
            O destinatario existente ou o recem-criado
        """
        try:
            self.client.table(self.RECIPIENTS_TABLE).upsert(
                {
                    "campaign_id": campaign_id,
                    "customer_id": customer_id,
                    "status": RecipientStatus.ACTIVE.value,
                    "current_step": 0,
                    "enrolled_at": at.isoformat(),
                },
                on_conflict="campaign_id,customer_id",
                ignore_duplicates=True,
            ).execute()

            response = (
                self.client.table(self.RECIPIENTS_TABLE)
                .select("*")
                .eq("campaign_id", campaign_id)
                .eq("customer_id", customer_id)
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            return CampaignRecipient.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao matricular cliente {customer_id} na campanha {campaign_id}: {e}")
            return None

    async def delete_recipient(self, recipient_id: str) -> bool:
        try:
            response = self.client.table(self.RECIPIENTS_TABLE).delete().eq("id", recipient_id).execute()
            return bool(response.data)

        except Exception as e:
            logger.error(f"Erro ao remover destinatario {recipient_id}: {e}")
            return False

    async def update_recipient_status(
        self,
        recipient_id: str,
        expected: RecipientStatus,
        target: RecipientStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[CampaignRecipient]:
        """
        Muda o status somente se o atual ainda for `expected`.

        Returns:
            Destinatario atualizado, ou None se o status ja tinha mudado
        """
        try:
            response = (
                self.client.table(self.RECIPIENTS_TABLE)
                .update({**(fields or {}), "status": target.value})
                .eq("id", recipient_id)
                .eq("status", expected.value)
                .execute()
            )
            if not response.data:
                return None
            return CampaignRecipient.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao atualizar destinatario {recipient_id}: {e}")
            raise DatabaseError("Erro ao atualizar destinatario", original_error=e)

    async def opt_out_active_recipients(self, customer_id: str, at: datetime) -> int:
        """Move todas as matriculas ACTIVE do cliente para OPTED_OUT."""
        try:
            response = (
                self.client.table(self.RECIPIENTS_TABLE)
                .update({"status": RecipientStatus.OPTED_OUT.value, "opted_out_at": at.isoformat()})
                .eq("customer_id", customer_id)
                .eq("status", RecipientStatus.ACTIVE.value)
                .execute()
            )
            return len(response.data or [])

        except Exception as e:
            logger.error(f"Erro ao encerrar matriculas do cliente {customer_id}: {e}")
            raise DatabaseError("Erro ao registrar opt-out nas campanhas", original_error=e)

    # =========================================================================
    # Mensagens
    # =========================================================================

    async def get_message(self, message_id: str) -> Optional[Message]:
        try:
            response = (
                self.client.table(self.MESSAGES_TABLE).select("*").eq("id", message_id).limit(1).execute()
            )
            if not response.data:
                return None
            return Message.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao buscar mensagem {message_id}: {e}")
            return None

    async def get_message_by_external_id(self, external_id: str) -> Optional[Message]:
        try:
            response = (
                self.client.table(self.MESSAGES_TABLE)
                .select("*")
                .eq("external_id", external_id)
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            return Message.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao buscar mensagem externa {external_id}: {e}")
            return None

    async def list_pending_messages(self, campaign_id: str) -> List[Message]:
        """Mensagens PENDING deixadas por uma execucao interrompida."""
        def build_query():
            return (
                self.client.table(self.MESSAGES_TABLE)
                .select("*")
                .eq("campaign_id", campaign_id)
                .eq("status", MessageStatus.PENDING.value)
                .order("created_at")
                .order("id")
            )

        try:
            rows = self._fetch_all(build_query)
            return [Message.from_db_row(row) for row in rows]

        except Exception as e:
            logger.error(f"Erro ao listar mensagens pendentes da campanha {campaign_id}: {e}")
            raise DatabaseError("Erro ao listar mensagens pendentes", original_error=e)

    async def update_message(
        self,
        message_id: str,
        expected: MessageStatus,
        fields: Dict[str, Any],
    ) -> Optional[Message]:
        """Atualiza a mensagem se o status atual ainda for `expected`."""
        try:
            response = (
                self.client.table(self.MESSAGES_TABLE)
                .update(fields)
                .eq("id", message_id)
                .eq("status", expected.value)
                .execute()
            )
            if not response.data:
                return None
            return Message.from_db_row(response.data[0])

        except Exception as e:
            logger.error(f"Erro ao atualizar mensagem {message_id}: {e}")
            raise DatabaseError("Erro ao atualizar mensagem", original_error=e)

    async def stamp_engagement(self, message_id: str, column: str, at: datetime) -> bool:
        """Grava opened_at/clicked_at uma unica vez."""
        try:
            response = (
                self.client.table(self.MESSAGES_TABLE)
                .update({column: at.isoformat()})
                .eq("id", message_id)
                .is_(column, "null")
                .execute()
            )
            return bool(response.data)

        except Exception as e:
            logger.error(f"Erro ao registrar engajamento da mensagem {message_id}: {e}")
            return False

    # =========================================================================
    # Execucoes (RPCs transacionais)
    # =========================================================================

    async def commit_run(
        self,
        campaign_id: str,
        run_id: str,
        run_at: datetime,
        enroll_customer_ids: List[str],
        messages: List[PlannedMessage],
    ) -> CommitResult:
        """
        Grava matriculas e mensagens PENDING em uma transacao.

        Raises:
            DatabaseError: Nada foi gravado
        """
        if not enroll_customer_ids and not messages:
            return CommitResult()

        try:
            response = self.client.rpc(
                "commit_campaign_run",
                {
                    "p_campaign_id": campaign_id,
                    "p_run_id": run_id,
                    "p_run_at": run_at.isoformat(),
                    "p_enroll_customer_ids": enroll_customer_ids,
                    "p_messages": [m.to_dict() for m in messages],
                },
            ).execute()

        except Exception as e:
            logger.error(f"Erro no commit da execucao {run_id} da campanha {campaign_id}: {e}")
            raise DatabaseError("Erro ao gravar execucao da campanha", original_error=e)

        data = response.data or {}
        if isinstance(data, list):
            data = data[0] if data else {}
        return CommitResult(
            enrolled=data.get("enrolled", 0),
            messages=[Message.from_db_row(row) for row in data.get("messages") or []],
        )

    async def finalize_message(
        self,
        message: Message,
        status: MessageStatus,
        at: datetime,
        total_steps: int,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Finaliza o envio: status da mensagem e avanco do destinatario juntos.

        SENT avanca o passo (COMPLETED no ultimo); BOUNCED encerra o
        destinatario; FAILED nao mexe no destinatario.

        Raises:
            DatabaseError: Mensagem continua PENDING
        """
        try:
            response = self.client.rpc(
                "finalize_campaign_message",
                {
                    "p_message_id": message.id,
                    "p_status": status.value,
                    "p_at": at.isoformat(),
                    "p_total_steps": total_steps,
                    "p_external_id": external_id,
                    "p_error": error,
                },
            ).execute()
            data = response.data or {}
            return data[0] if isinstance(data, list) and data else data

        except Exception as e:
            logger.error(f"Erro ao finalizar mensagem {message.id}: {e}")
            raise DatabaseError("Erro ao finalizar mensagem", original_error=e)

    async def complete_run(self, run: CampaignRun) -> str:
        """
        Grava a linha da execucao e atualiza last_run_at/total_sent.

        Returns:
            ID da execucao

        Raises:
            DatabaseError: Linha da execucao nao foi gravada
        """
        try:
            response = self.client.rpc("complete_campaign_run", {"p_run": run.to_dict()}).execute()
            data = response.data
            if isinstance(data, list):
                data = data[0] if data else None
            return str(data) if data else run.id

        except Exception as e:
            logger.error(f"Erro ao registrar execucao da campanha {run.campaign_id}: {e}")
            raise DatabaseError("Erro ao registrar execucao da campanha", original_error=e)

    async def list_runs(self, campaign_id: str, limit: int = 10) -> List[CampaignRun]:
        try:
            response = (
                self.client.table(self.RUNS_TABLE)
                .select("*")
                .eq("campaign_id", campaign_id)
                .order("run_at", desc=True)
                .limit(limit)
                .execute()
            )
            return [CampaignRun.from_db_row(row) for row in (response.data or [])]

        except Exception as e:
            logger.error(f"Erro ao listar execucoes da campanha {campaign_id}: {e}")
            return []

    # =========================================================================
    # Analytics
    # =========================================================================

    async def count_by_status(self, table: str, campaign_id: str) -> Dict[str, int]:
        """Contagem por status de destinatarios ou mensagens."""
        try:
            rows = self._fetch_all(
                lambda: self.client.table(table).select("id, status").eq("campaign_id", campaign_id).order("id")
            )
            contagem: Dict[str, int] = {}
            for row in rows:
                contagem[row["status"]] = contagem.get(row["status"], 0) + 1
            return contagem

        except Exception as e:
            logger.error(f"Erro ao contar {table} da campanha {campaign_id}: {e}")
            return {}


campaign_repository = CampaignRepository()
