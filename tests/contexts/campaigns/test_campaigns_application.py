"""
Testes do Application Service de Campanhas drip.

Repository, motor e populacao sao mocks injetados; o audit log e
substituido para nao agendar gravacoes.
"""
from unittest.mock import AsyncMock, patch

import pytest

from app.contexts.campaigns.application import CampaignsApplicationService
from app.core.exceptions import CampaignRunInProgressError
from app.services.campaigns.engine import RunResult
from app.services.campaigns.types import (
    Campaign,
    CampaignRecipient,
    CampaignStatus,
    CampaignType,
)
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.types import SegmentCriterion, SegmentDefinition


def _campanha(status=CampaignStatus.DRAFT, criteria=None, campaign_type=CampaignType.EXAM_REMINDER) -> Campaign:
    return Campaign(
        id="camp-1",
        name="Lembrete de exame",
        type=campaign_type,
        status=status,
        segment=SegmentDefinition(criteria=criteria or []),
    )


@pytest.fixture
def mock_repository():
    repo = AsyncMock()
    repo.RECIPIENTS_TABLE = "campaign_recipients"
    repo.MESSAGES_TABLE = "campaign_messages"
    return repo


@pytest.fixture
def mock_engine():
    return AsyncMock()


@pytest.fixture
def mock_population():
    return AsyncMock()


@pytest.fixture
def service(mock_repository, mock_engine, mock_population):
    return CampaignsApplicationService(
        repository=mock_repository,
        engine=mock_engine,
        population=mock_population,
    )


@pytest.fixture(autouse=True)
def mock_audit():
    with patch("app.services.audit.record") as mock:
        yield mock


class TestCriarCampanha:
    @pytest.mark.asyncio
    async def test_sem_segmento_usa_preset_do_tipo(self, service, mock_repository, mock_audit):
        mock_repository.create.return_value = _campanha()

        result = await service.create_campaign("Lembrete", "EXAM_REMINDER", actor="admin-1")

        assert result.success
        payload = mock_repository.create.call_args.args[0]
        assert payload["type"] == "EXAM_REMINDER"
        assert payload["created_by"] == "admin-1"
        assert payload["segment"]["criteria"]
        assert mock_audit.call_args.args[0] == "admin-1"

    @pytest.mark.asyncio
    async def test_tipo_invalido(self, service, mock_repository):
        result = await service.create_campaign("X", "BIRTHDAY_PARTY", actor="admin-1")

        assert not result.success
        assert "BIRTHDAY_PARTY" in result.error
        mock_repository.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_nome_obrigatorio(self, service):
        result = await service.create_campaign("  ", "EXAM_REMINDER", actor="admin-1")

        assert not result.success

    @pytest.mark.asyncio
    async def test_segmento_invalido_nomeia_o_campo(self, service, mock_repository):
        result = await service.create_campaign(
            "X",
            "ONE_TIME_BLAST",
            actor="admin-1",
            segment={"criteria": [{"field": "shoeSize", "operator": "eq", "value": 42}]},
        )

        assert not result.success
        assert "shoeSize" in result.error
        mock_repository.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_config_drip_invalida(self, service, mock_repository):
        result = await service.create_campaign(
            "X", "ONE_TIME_BLAST", actor="admin-1", segment=[], config={"steps": [{"channel": "FAX"}]}
        )

        assert not result.success
        mock_repository.create.assert_not_called()


class TestStatus:
    @pytest.mark.asyncio
    async def test_ativa_draft_valida(self, service, mock_repository, mock_audit):
        mock_repository.get_by_id.return_value = _campanha()
        mock_repository.update_status.return_value = _campanha(status=CampaignStatus.ACTIVE)

        result = await service.activate_campaign("camp-1", actor="admin-1")

        assert result.success
        mock_repository.update_status.assert_awaited_once_with("camp-1", CampaignStatus.ACTIVE)
        assert mock_audit.call_args.args[4] == {"from": "DRAFT", "to": "ACTIVE"}

    @pytest.mark.asyncio
    async def test_ativacao_com_segmento_invalido(self, service, mock_repository):
        mock_repository.get_by_id.return_value = _campanha(
            criteria=[SegmentCriterion(field="age", operator="between", value=[60])]
        )

        result = await service.activate_campaign("camp-1", actor="admin-1")

        assert not result.success
        assert "age" in result.error
        mock_repository.update_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_arquivada_nao_volta_a_ativa(self, service, mock_repository):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.ARCHIVED)

        result = await service.activate_campaign("camp-1", actor="admin-1")

        assert not result.success
        mock_repository.update_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_pausar_draft_nao_permitido(self, service, mock_repository):
        mock_repository.get_by_id.return_value = _campanha()

        result = await service.pause_campaign("camp-1", actor="admin-1")

        assert not result.success

    @pytest.mark.asyncio
    async def test_mesmo_status_e_no_op(self, service, mock_repository, mock_audit):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.PAUSED)

        result = await service.pause_campaign("camp-1", actor="admin-1")

        assert result.success
        mock_repository.update_status.assert_not_called()
        mock_audit.assert_not_called()

    @pytest.mark.asyncio
    async def test_campanha_inexistente(self, service, mock_repository):
        mock_repository.get_by_id.return_value = None

        result = await service.archive_campaign("camp-x", actor="admin-1")

        assert not result.success
        assert result.error == "Campanha nao encontrada"


class TestRemocao:
    @pytest.mark.asyncio
    async def test_ativa_nao_pode_ser_removida(self, service, mock_repository):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.ACTIVE)

        result = await service.delete_campaign("camp-1", actor="admin-1")

        assert not result.success
        mock_repository.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_pausada_removida_e_auditada(self, service, mock_repository, mock_audit):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.PAUSED)
        mock_repository.delete.return_value = True

        result = await service.delete_campaign("camp-1", actor="admin-1")

        assert result.success
        mock_audit.assert_called_once()


class TestExecucaoManual:
    @pytest.mark.asyncio
    async def test_somente_admin(self, service, mock_engine):
        result = await service.trigger_run_now("camp-1", actor="staff-1", actor_role="STAFF")

        assert not result.success
        mock_engine.process_campaign.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_executa(self, service, mock_engine, mock_audit):
        mock_engine.process_campaign.return_value = RunResult(
            campaign_id="camp-1", run_id="run-1", messages_sent=3
        )

        result = await service.trigger_run_now("camp-1", actor="admin-1", actor_role="ADMIN")

        assert result.success
        assert result.data["messages_sent"] == 3
        assert mock_audit.call_args.args[4] == {"run_id": "run-1", "sent": 3}

    @pytest.mark.asyncio
    async def test_execucao_em_andamento(self, service, mock_engine):
        mock_engine.process_campaign.side_effect = CampaignRunInProgressError("camp-1")

        result = await service.trigger_run_now("camp-1", actor="admin-1", actor_role="ADMIN")

        assert not result.success
        assert result.error == "Campanha ja esta em execucao"

    @pytest.mark.asyncio
    async def test_erro_da_execucao_volta_com_resumo(self, service, mock_engine):
        mock_engine.process_campaign.return_value = RunResult(
            campaign_id="camp-1", run_id="run-1", error="banco fora"
        )

        result = await service.trigger_run_now("camp-1", actor="admin-1", actor_role="ADMIN")

        assert not result.success
        assert result.error == "banco fora"
        assert result.data["run_id"] == "run-1"


class TestMatricula:
    @pytest.mark.asyncio
    async def test_arquivada_nao_aceita(self, service, mock_repository):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.ARCHIVED)

        result = await service.enroll_customer("camp-1", "ana", actor="admin-1")

        assert not result.success
        mock_repository.enroll.assert_not_called()

    @pytest.mark.asyncio
    async def test_matricula_manual(self, service, mock_repository, agora):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.ACTIVE)
        mock_repository.enroll.return_value = CampaignRecipient(
            id="r-1", campaign_id="camp-1", customer_id="ana", enrolled_at=agora
        )

        result = await service.enroll_customer("camp-1", "ana", actor="admin-1")

        assert result.success
        assert result.data["customer_id"] == "ana"


class TestPreview:
    @pytest.mark.asyncio
    async def test_conta_e_amostra(self, service, mock_population):
        mock_population.load_population.return_value = [
            CustomerSnapshot.from_db_row({"id": "ana", "first_name": "Ana", "is_active": True, "tags": ["vip"]}),
            CustomerSnapshot.from_db_row({"id": "bia", "first_name": "Bia", "is_active": True, "tags": []}),
        ]

        result = await service.preview_segment([{"field": "tags", "operator": "contains", "value": "vip"}])

        assert result.success
        assert result.data["count"] == 1
        assert result.data["sample"][0]["id"] == "ana"

    @pytest.mark.asyncio
    async def test_segmento_invalido(self, service, mock_population):
        result = await service.preview_segment([{"field": "age", "operator": "contains", "value": 3}])

        assert not result.success
        mock_population.load_population.assert_not_called()


class TestLeitura:
    @pytest.mark.asyncio
    async def test_status_invalido_no_filtro(self, service):
        result = await service.list_campaigns(status="RUNNING")

        assert not result.success

    @pytest.mark.asyncio
    async def test_analytics(self, service, mock_repository):
        mock_repository.get_by_id.return_value = _campanha(status=CampaignStatus.ACTIVE)
        mock_repository.count_by_status.side_effect = [{"ACTIVE": 4, "COMPLETED": 1}, {"SENT": 7}]
        mock_repository.list_runs.return_value = []

        result = await service.get_campaign_analytics("camp-1")

        assert result.data["total_destinatarios"] == 5
        assert result.data["total_mensagens"] == 7

    def test_catalogo_de_campos(self, service):
        result = service.list_segment_fields()

        assert result.success
        assert any(f["name"] == "lifetimeSpend" for f in result.data)
