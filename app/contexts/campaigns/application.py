"""
Application Service do Bounded Context: Campanhas drip

Ponto de entrada dos casos de uso de administracao de campanhas. Orquestra
repositorio, compilador de segmentos, motor de execucao e audit log, sem
regra de negocio propria.

Padrao: API Route -> Application Service -> Repository/Domain Service

Todo caso de uso retorna ActionResult em vez de levantar excecao: a camada
de UI renderiza `error` sem tratar excecoes.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core.config import CampaignsConfig
from app.core.exceptions import (
    CampaignRunInProgressError,
    MarketingException,
    SegmentCompileError,
)
from app.core.timezone import agora_utc
from app.services import audit
from app.services.campaigns.drip import resolve_drip_config
from app.services.campaigns.engine import enrollment_manager
from app.services.campaigns.repository import campaign_repository
from app.services.campaigns.types import (
    Campaign,
    CampaignConfig,
    CampaignStatus,
    CampaignType,
)
from app.services.segments.compiler import compile_segment
from app.services.segments.fields import list_fields
from app.services.segments.presets import get_segment_preset
from app.services.segments.repository import population_repository
from app.services.segments.types import SegmentDefinition

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMIN"

# Transicoes permitidas de status de campanha
_STATUS_TRANSITIONS = {
    CampaignStatus.ACTIVE: (CampaignStatus.DRAFT, CampaignStatus.PAUSED),
    CampaignStatus.PAUSED: (CampaignStatus.ACTIVE,),
    CampaignStatus.ARCHIVED: (CampaignStatus.DRAFT, CampaignStatus.ACTIVE, CampaignStatus.PAUSED),
}


@dataclass
class ActionResult:
    """Resultado de um caso de uso administrativo."""

    success: bool
    error: Optional[str] = None
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "error": self.error, "data": self.data}


class CampaignsApplicationService:
    """
    Application Service para o contexto de Campanhas drip.

    Cada metodo publico representa um caso de uso. A rota chama apenas
    estes metodos.
    """

    def __init__(self, repository=None, engine=None, population=None):
        """
        Permite injecao de dependencias para testes.

        Args:
            repository: Repositorio de campanhas (default: singleton)
            engine: EnrollmentManager (default: singleton)
            population: Repositorio da populacao de clientes (default: singleton)
        """
        self._repository = repository or campaign_repository
        self._engine = engine or enrollment_manager
        self._population = population or population_repository

    # =========================================================================
    # Leitura
    # =========================================================================

    async def list_campaigns(self, status: Optional[str] = None, limit: int = 50) -> ActionResult:
        if status:
            try:
                status = CampaignStatus(status).value
            except ValueError:
                return ActionResult.fail(
                    f"Status invalido: '{status}'. Valores aceitos: {[s.value for s in CampaignStatus]}"
                )

        campanhas = await self._repository.list(status=status, limit=limit)
        return ActionResult.ok({"campanhas": [c.to_dict() for c in campanhas], "total": len(campanhas)})

    async def get_campaign_detail(self, campaign_id: str) -> ActionResult:
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")

        detalhe = campanha.to_dict()
        detalhe["drip"] = resolve_drip_config(campanha).to_dict()
        return ActionResult.ok(detalhe)

    async def get_campaign_analytics(self, campaign_id: str) -> ActionResult:
        """Destinatarios e mensagens por status, mais as ultimas execucoes."""
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")

        destinatarios = await self._repository.count_by_status(
            self._repository.RECIPIENTS_TABLE, campaign_id
        )
        mensagens = await self._repository.count_by_status(self._repository.MESSAGES_TABLE, campaign_id)
        execucoes = await self._repository.list_runs(campaign_id, limit=CampaignsConfig.ANALYTICS_RECENT_RUNS)

        return ActionResult.ok(
            {
                "campanha": campanha.to_dict(),
                "destinatarios_por_status": destinatarios,
                "mensagens_por_status": mensagens,
                "total_destinatarios": sum(destinatarios.values()),
                "total_mensagens": sum(mensagens.values()),
                "execucoes": [r.to_dict() for r in execucoes],
            }
        )

    def list_segment_fields(self) -> ActionResult:
        return ActionResult.ok(list_fields())

    async def preview_segment(self, segment: Any) -> ActionResult:
        """
        Conta e amostra o segmento sem matricular ninguem.

        Args:
            segment: SegmentDefinition, dict de segmento ou lista de criterios
        """
        try:
            definicao = segment if isinstance(segment, SegmentDefinition) else SegmentDefinition.from_dict(segment)
            compiled = compile_segment(definicao)
        except SegmentCompileError as e:
            return ActionResult.fail(e.message)
        except ValueError as e:
            return ActionResult.fail(f"Segmento invalido: {e}")

        try:
            populacao = await self._population.load_population(compiled.pushdown_filters())
        except MarketingException as e:
            return ActionResult.fail(e.message)

        matching = [s for s in populacao if compiled.matches(s)]
        amostra = [
            {
                "id": s.id,
                "first_name": s.get("first_name"),
                "last_name": s.get("last_name"),
                "phone": s.get("phone"),
                "email": s.get("email"),
            }
            for s in matching[: CampaignsConfig.PREVIEW_SAMPLE_SIZE]
        ]
        return ActionResult.ok({"count": len(matching), "sample": amostra})

    # =========================================================================
    # Escrita
    # =========================================================================

    async def create_campaign(
        self,
        name: str,
        campaign_type: str,
        actor: str,
        description: Optional[str] = None,
        segment: Any = None,
        config: Optional[dict] = None,
    ) -> ActionResult:
        """
        Cria campanha em DRAFT.

        Sem segmento informado, usa o preset do tipo.
        """
        if not name or not name.strip():
            return ActionResult.fail("Nome da campanha e obrigatorio")

        try:
            tipo = CampaignType(campaign_type)
        except ValueError:
            return ActionResult.fail(f"Tipo de campanha invalido: '{campaign_type}'")

        try:
            definicao = (
                SegmentDefinition.from_dict(segment) if segment is not None else get_segment_preset(tipo.value)
            )
            compile_segment(definicao)
            drip = CampaignConfig.from_dict(config) if config else None
        except SegmentCompileError as e:
            return ActionResult.fail(e.message)
        except (ValueError, TypeError) as e:
            return ActionResult.fail(f"Configuracao invalida: {e}")

        campanha = await self._repository.create(
            {
                "name": name.strip(),
                "type": tipo.value,
                "description": description,
                "segment": definicao.to_dict(),
                "config": drip.to_dict() if drip else None,
                "created_by": actor,
            }
        )
        if not campanha:
            return ActionResult.fail("Erro ao criar campanha")

        audit.record(actor, audit.AuditAction.CREATE, "Campaign", campanha.id,
                     {"name": campanha.name, "type": tipo.value})
        return ActionResult.ok(campanha.to_dict())

    async def update_campaign(
        self,
        campaign_id: str,
        actor: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ActionResult:
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")

        fields: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                return ActionResult.fail("Nome da campanha e obrigatorio")
            fields["name"] = name.strip()
        if description is not None:
            fields["description"] = description
        if not fields:
            return ActionResult.ok(campanha.to_dict())

        atualizada = await self._repository.update_fields(campaign_id, fields)
        if not atualizada:
            return ActionResult.fail("Erro ao atualizar campanha")

        audit.record(actor, audit.AuditAction.UPDATE, "Campaign", campaign_id, fields)
        return ActionResult.ok(atualizada.to_dict())

    async def activate_campaign(self, campaign_id: str, actor: str) -> ActionResult:
        """
        DRAFT/PAUSED -> ACTIVE.

        O segmento e a sequencia sao validados aqui: uma campanha invalida
        nunca fica ACTIVE.
        """
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")

        try:
            compile_segment(campanha.segment)
        except SegmentCompileError as e:
            return ActionResult.fail(e.message)

        if not resolve_drip_config(campanha).steps:
            return ActionResult.fail("Campanha sem passos de mensagem")

        return await self._change_status(campanha, CampaignStatus.ACTIVE, actor)

    async def pause_campaign(self, campaign_id: str, actor: str) -> ActionResult:
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")
        return await self._change_status(campanha, CampaignStatus.PAUSED, actor)

    async def archive_campaign(self, campaign_id: str, actor: str) -> ActionResult:
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")
        return await self._change_status(campanha, CampaignStatus.ARCHIVED, actor)

    async def delete_campaign(self, campaign_id: str, actor: str) -> ActionResult:
        """Remove campanha que nao esta ACTIVE (pause ou arquive antes)."""
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")

        if campanha.is_active:
            return ActionResult.fail("Campanha ativa nao pode ser removida; pause antes")

        if not await self._repository.delete(campaign_id):
            return ActionResult.fail("Erro ao remover campanha")

        audit.record(actor, audit.AuditAction.DELETE, "Campaign", campaign_id, {"name": campanha.name})
        return ActionResult.ok({"id": campaign_id})

    async def trigger_run_now(self, campaign_id: str, actor: str, actor_role: str) -> ActionResult:
        """Execucao manual imediata. Somente ADMIN."""
        if actor_role != ADMIN_ROLE:
            return ActionResult.fail("Apenas administradores podem executar campanhas manualmente")

        try:
            result = await self._engine.process_campaign(campaign_id)
        except CampaignRunInProgressError as e:
            return ActionResult.fail(e.message)
        except MarketingException as e:
            return ActionResult.fail(e.message)
        except Exception as e:
            logger.error(f"[CampaignsApplicationService] Erro ao executar campanha {campaign_id}: {e}")
            return ActionResult.fail(str(e))

        audit.record(actor, audit.AuditAction.RUN, "Campaign", campaign_id,
                     {"run_id": result.run_id, "sent": result.messages_sent})

        if result.error:
            return ActionResult(success=False, error=result.error, data=result.to_dict())
        return ActionResult.ok(result.to_dict())

    async def enroll_customer(self, campaign_id: str, customer_id: str, actor: str) -> ActionResult:
        """Matricula manual (campanhas em modo manual ou excecoes)."""
        campanha = await self._repository.get_by_id(campaign_id)
        if not campanha:
            return ActionResult.fail("Campanha nao encontrada")
        if campanha.status == CampaignStatus.ARCHIVED:
            return ActionResult.fail("Campanha arquivada nao aceita matriculas")

        recipient = await self._repository.enroll(campaign_id, customer_id, agora_utc())
        if not recipient:
            return ActionResult.fail("Erro ao matricular cliente")

        audit.record(actor, audit.AuditAction.CREATE, "CampaignRecipient", recipient.id,
                     {"campaign_id": campaign_id, "customer_id": customer_id})
        return ActionResult.ok(recipient.to_dict())

    async def remove_recipient(self, recipient_id: str, actor: str) -> ActionResult:
        recipient = await self._repository.get_recipient(recipient_id)
        if not recipient:
            return ActionResult.fail("Destinatario nao encontrado")

        if not await self._repository.delete_recipient(recipient_id):
            return ActionResult.fail("Erro ao remover destinatario")

        audit.record(actor, audit.AuditAction.DELETE, "CampaignRecipient", recipient_id,
                     {"campaign_id": recipient.campaign_id, "customer_id": recipient.customer_id})
        return ActionResult.ok({"id": recipient_id})

    async def _change_status(self, campanha: Campaign, target: CampaignStatus, actor: str) -> ActionResult:
        if campanha.status == target:
            return ActionResult.ok(campanha.to_dict())

        if campanha.status not in _STATUS_TRANSITIONS[target]:
            return ActionResult.fail(
                f"Campanha com status '{campanha.status.value}' nao pode ir para '{target.value}'"
            )

        atualizada = await self._repository.update_status(campanha.id, target)
        if not atualizada:
            return ActionResult.fail("Erro ao atualizar status da campanha")

        audit.record(actor, audit.AuditAction.STATUS_CHANGE, "Campaign", campanha.id,
                     {"from": campanha.status.value, "to": target.value})
        return ActionResult.ok(atualizada.to_dict())


def get_campaigns_service() -> CampaignsApplicationService:
    """
    Retorna instancia do CampaignsApplicationService.

    Para testes, crie com dependencias mockadas:
        service = CampaignsApplicationService(repository=mock_repo, engine=mock_engine)
    """
    return CampaignsApplicationService()
