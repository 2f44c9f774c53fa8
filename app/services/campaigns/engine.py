"""
Motor de execucao de campanhas (matricula + drip).

Uma execucao de campanha roda em tres fases, sob o lock da campanha:

1. Planejamento (memoria): compila o segmento, carrega a populacao em
   lote, avalia, separa novos matriculados e calcula os passos vencidos.
   Todos os horarios usam o `now` capturado no inicio.
2. Commit (uma transacao): matriculas novas + mensagens PENDING.
3. Disparo: envia cada mensagem e finaliza mensagem + destinatario juntos.
   O TTL do lock e renovado a cada lote; se o lock foi perdido o disparo
   para e o resto fica PENDING.

Rodar duas vezes com o mesmo `now` nao duplica matricula nem mensagem.
Mensagens PENDING deixadas por uma execucao interrompida sao reenviadas
na proxima, nunca recriadas.
"""
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.core.config import CampaignsConfig
from app.core.distributed_lock import LockNotAcquiredError, campaign_run_lock
from app.core.exceptions import CampaignRunInProgressError, DatabaseError, NotFoundError
from app.core.timezone import agora_utc
from app.services.campaigns.drip import due_step, resolve_drip_config
from app.services.campaigns.lifecycle import can_contact
from app.services.campaigns.repository import (
    CampaignRepository,
    PlannedMessage,
    campaign_repository,
)
from app.services.campaigns.templates import interpolate, resolve_variables
from app.services.campaigns.transport import MessageTransport, SendOutcome, get_transport
from app.services.campaigns.types import (
    Campaign,
    CampaignConfig,
    CampaignRecipient,
    CampaignRun,
    Message,
    MessageStatus,
    RecipientStatus,
)
from app.services.segments.compiler import compile_segment
from app.services.segments.repository import CustomerPopulationRepository, population_repository

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Resultado de uma execucao de campanha."""

    campaign_id: str
    campaign_name: str = ""
    run_id: Optional[str] = None
    recipients_found: int = 0
    recipients_enrolled: int = 0
    messages_queued: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    messages_bounced: int = 0
    duration_ms: int = 0
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    run_recorded: bool = True

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class _RunPlan:
    new_customer_ids: List[str]
    messages: List[PlannedMessage]
    pending: List[Message]


class EnrollmentManager:
    """
    Executa campanhas ativas.

    Dependencias injetaveis para teste; os defaults sao os singletons de
    producao.
    """

    def __init__(
        self,
        repository: Optional[CampaignRepository] = None,
        population: Optional[CustomerPopulationRepository] = None,
        transport: Optional[MessageTransport] = None,
        lock_factory: Optional[Callable[[str], Any]] = None,
    ):
        self._repository = repository or campaign_repository
        self._population = population or population_repository
        self._transport = transport
        self._lock_factory = lock_factory or campaign_run_lock

    @property
    def transport(self) -> MessageTransport:
        if self._transport is None:
            self._transport = get_transport()
        return self._transport

    async def process_all_campaigns(self, now: Optional[datetime] = None) -> List[RunResult]:
        """
        Executa todas as campanhas ACTIVE, uma por vez.

        Falha de uma campanha nunca impede as outras.
        """
        campanhas = await self._repository.list_active()
        logger.info(f"[CampaignEngine] Processando {len(campanhas)} campanhas ativas")

        resultados = []
        for campanha in campanhas:
            try:
                resultados.append(await self.process_campaign(campanha.id, now=now))
            except CampaignRunInProgressError:
                resultados.append(
                    RunResult(
                        campaign_id=campanha.id,
                        campaign_name=campanha.name,
                        skipped=True,
                        skip_reason="execucao em andamento",
                    )
                )
            except Exception as e:
                logger.error(f"[CampaignEngine] Erro na campanha {campanha.id}: {e}", exc_info=True)
                resultados.append(
                    RunResult(campaign_id=campanha.id, campaign_name=campanha.name, error=str(e))
                )

        return resultados

    async def process_campaign(self, campaign_id: str, now: Optional[datetime] = None) -> RunResult:
        """
        Executa uma campanha.

        Raises:
            NotFoundError: Campanha nao existe
            CampaignRunInProgressError: Outra execucao da mesma campanha
                esta em andamento
        """
        campanha = await self._repository.get_by_id(campaign_id)
        if campanha is None:
            raise NotFoundError("campanha", campaign_id)

        if not campanha.is_active:
            return RunResult(
                campaign_id=campanha.id,
                campaign_name=campanha.name,
                skipped=True,
                skip_reason=f"status {campanha.status.value}",
            )

        lock = self._lock_factory(campaign_id)
        try:
            async with lock:
                return await self._run(campanha, now or agora_utc(), lock)
        except LockNotAcquiredError:
            raise CampaignRunInProgressError(campaign_id)

    async def _run(self, campanha: Campaign, now: datetime, lock) -> RunResult:
        inicio = time.monotonic()
        result = RunResult(
            campaign_id=campanha.id,
            campaign_name=campanha.name,
            run_id=str(uuid.uuid4()),
        )

        try:
            config = resolve_drip_config(campanha)
            plan = await self._plan(campanha, config, now, result)

            committed = await self._repository.commit_run(
                campanha.id, result.run_id, now, plan.new_customer_ids, plan.messages
            )
            result.recipients_enrolled = committed.enrolled

            fila = plan.pending + committed.messages
            result.messages_queued = len(fila)

            extend_every = CampaignsConfig.DISPATCH_LOCK_EXTEND_EVERY
            for indice, message in enumerate(fila):
                # Lock perdido: outro worker pode pegar as mesmas PENDING
                if indice % extend_every == 0 and not await lock.extend():
                    logger.error(
                        f"[CampaignEngine] Lock da campanha {campanha.id} perdido; "
                        f"{len(fila) - indice} mensagens ficam PENDING para a proxima execucao"
                    )
                    result.error = "lock da execucao perdido"
                    break
                await self._dispatch(message, config, now, result)

        except Exception as e:
            logger.error(f"[CampaignEngine] Execucao da campanha {campanha.id} falhou: {e}", exc_info=True)
            result.error = str(e)

        result.duration_ms = int((time.monotonic() - inicio) * 1000)

        try:
            await self._repository.complete_run(
                CampaignRun(
                    id=result.run_id,
                    campaign_id=campanha.id,
                    run_at=now,
                    recipients_found=result.recipients_found,
                    recipients_enrolled=result.recipients_enrolled,
                    messages_queued=result.messages_queued,
                    messages_sent=result.messages_sent,
                    messages_failed=result.messages_failed + result.messages_bounced,
                    duration_ms=result.duration_ms,
                    error=result.error,
                )
            )
        except DatabaseError as e:
            logger.error(f"[CampaignEngine] Execucao {result.run_id} da campanha {campanha.id} nao registrada: {e}")
            result.run_recorded = False
            result.error = result.error or "registro da execucao nao gravado"

        logger.info(
            f"[CampaignEngine] {campanha.name}: {result.recipients_found} no segmento, "
            f"{result.recipients_enrolled} matriculados, {result.messages_sent} enviadas, "
            f"{result.messages_failed + result.messages_bounced} falhas",
            extra={"campaign_id": campanha.id, "run_id": result.run_id, "duration_ms": result.duration_ms},
        )
        return result

    async def _plan(
        self,
        campanha: Campaign,
        config: CampaignConfig,
        now: datetime,
        result: RunResult,
    ) -> _RunPlan:
        compiled = compile_segment(campanha.segment, now=now)

        populacao = await self._population.load_population(compiled.pushdown_filters())
        matching = compiled.evaluate(populacao)
        result.recipients_found = len(matching)

        recipients = await self._repository.list_recipients(campanha.id)
        pending = await self._repository.list_pending_messages(campanha.id)

        matriculados = {r.customer_id for r in recipients}
        com_pendente = {m.recipient_id for m in pending}

        # Matricula automatica so em modo auto; manual so avanca quem ja esta
        if config.enrollment_mode == "auto":
            novos = [cid for cid in matching if cid not in matriculados]
        else:
            novos = []

        candidatos = [
            r for r in recipients
            if r.status == RecipientStatus.ACTIVE and r.id not in com_pendente
        ]
        candidatos += [
            CampaignRecipient(id="", campaign_id=campanha.id, customer_id=cid, enrolled_at=now)
            for cid in novos
        ]

        vencidos = []
        for recipient in candidatos:
            step = due_step(recipient, config, now)
            if step is not None:
                vencidos.append((recipient, step))

        clientes = {s.id: s for s in populacao}
        faltando = [r.customer_id for r, _ in vencidos if r.customer_id not in clientes]
        if faltando:
            clientes.update(await self._population.load_customers(faltando))

        mensagens = []
        for recipient, step in vencidos:
            cliente = clientes.get(recipient.customer_id)
            if not can_contact(cliente, step.channel):
                logger.debug(
                    f"[CampaignEngine] Cliente {recipient.customer_id} sem contato em {step.channel.value}"
                )
                continue

            variables = resolve_variables(cliente)
            mensagens.append(
                PlannedMessage(
                    customer_id=recipient.customer_id,
                    step_index=step.step_index,
                    channel=step.channel,
                    subject=interpolate(step.template_subject, variables) if step.template_subject else None,
                    body=interpolate(step.template_body, variables),
                    destination=cliente.address_for(step.channel),
                )
            )

        ativos = {r.id for r in recipients if r.status == RecipientStatus.ACTIVE}
        reenviar = []
        for message in pending:
            if message.recipient_id in ativos:
                reenviar.append(message)
            else:
                # Destinatario encerrado depois do commit: nao envia
                await self._repository.finalize_message(
                    message,
                    MessageStatus.FAILED,
                    now,
                    total_steps=len(config.steps),
                    error="destinatario inativo",
                )

        return _RunPlan(new_customer_ids=novos, messages=mensagens, pending=reenviar)

    async def _dispatch(
        self,
        message: Message,
        config: CampaignConfig,
        now: datetime,
        result: RunResult,
    ) -> None:
        """
        Envia uma mensagem e finaliza.

        Erro do transporte conta como falha soft da mensagem. Erro ao
        gravar a finalizacao interrompe a execucao.
        """
        try:
            outcome = await self.transport.send(
                message.channel, message.destination, message.subject, message.body
            )
        except Exception as e:
            logger.warning(f"[CampaignEngine] Transporte falhou para mensagem {message.id}: {e}")
            outcome = SendOutcome.soft_failure(str(e))

        if outcome.delivered:
            status = MessageStatus.SENT
            result.messages_sent += 1
        elif outcome.hard_bounce:
            status = MessageStatus.BOUNCED
            result.messages_bounced += 1
        else:
            status = MessageStatus.FAILED
            result.messages_failed += 1

        await self._repository.finalize_message(
            message,
            status,
            now,
            total_steps=len(config.steps),
            external_id=outcome.external_id,
            error=outcome.error,
        )


def summarize_runs(results: List[RunResult], duration_ms: int) -> Dict[str, Any]:
    """Resumo de process_all_campaigns para o endpoint de job."""
    return {
        "processed_at": agora_utc().isoformat(),
        "duration_ms": duration_ms,
        "campaigns": len(results),
        "total_enrolled": sum(r.recipients_enrolled for r in results),
        "total_sent": sum(r.messages_sent for r in results),
        "total_failed": sum(r.messages_failed + r.messages_bounced for r in results),
        "errors": sum(1 for r in results if r.error),
        "results": [r.to_dict() for r in results],
    }


enrollment_manager = EnrollmentManager()
