"""
Testes do ciclo de vida de destinatarios e mensagens.
"""
from datetime import timedelta

import pytest

from app.core.exceptions import DatabaseError, InvalidTransitionError, NotFoundError
from app.services.campaigns.lifecycle import (
    RecipientLifecycle,
    can_contact,
    can_transition_message,
    can_transition_recipient,
)
from app.services.campaigns.types import (
    CampaignConfig,
    ConversionEvent,
    ConversionKind,
    DripStep,
    EngagementType,
    Message,
    MessageStatus,
    RecipientStatus,
)
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.types import Channel


@pytest.fixture
def lifecycle(fake_repository, fake_population):
    return RecipientLifecycle(repository=fake_repository, population=fake_population)


@pytest.fixture
def mensagem_enviada(fake_repository, nova_campanha, agora):
    fake_repository.add_campaign(nova_campanha("camp-1"))
    recipient = fake_repository.add_recipient("camp-1", "ana", enrolled_at=agora, current_step=1)
    message = Message(
        id="m-1",
        campaign_id="camp-1",
        customer_id="ana",
        recipient_id=recipient.id,
        channel=Channel.SMS,
        body="Hi Ana",
        status=MessageStatus.SENT,
        external_id="ext-1",
        sent_at=agora,
    )
    fake_repository.messages[message.id] = message
    return message


class TestMaquinaDeEstados:
    def test_terminais_nunca_mudam(self):
        for terminal in (
            RecipientStatus.COMPLETED,
            RecipientStatus.CONVERTED,
            RecipientStatus.OPTED_OUT,
            RecipientStatus.BOUNCED,
        ):
            for target in RecipientStatus:
                assert not can_transition_recipient(terminal, target)

    def test_active_vai_para_qualquer_terminal(self):
        assert can_transition_recipient(RecipientStatus.ACTIVE, RecipientStatus.CONVERTED)
        assert not can_transition_recipient(RecipientStatus.ACTIVE, RecipientStatus.ACTIVE)

    def test_mensagem_nao_regride(self):
        assert can_transition_message(MessageStatus.SENT, MessageStatus.DELIVERED)
        assert not can_transition_message(MessageStatus.DELIVERED, MessageStatus.SENT)
        assert not can_transition_message(MessageStatus.FAILED, MessageStatus.SENT)

    def test_can_contact(self):
        ok = CustomerSnapshot.from_db_row({"id": "c", "phone": "+1", "sms_opt_in": True})
        opt_out = CustomerSnapshot.from_db_row(
            {"id": "c", "phone": "+1", "sms_opt_in": True, "marketing_opt_out": True}
        )
        inativo = CustomerSnapshot.from_db_row(
            {"id": "c", "phone": "+1", "sms_opt_in": True, "is_active": False}
        )

        assert can_contact(ok, Channel.SMS)
        assert not can_contact(ok, Channel.EMAIL)
        assert not can_contact(opt_out, Channel.SMS)
        assert not can_contact(inativo, Channel.SMS)
        assert not can_contact(None, Channel.SMS)


class TestTransicaoDestinatario:
    @pytest.mark.asyncio
    async def test_transicao_valida(self, lifecycle, fake_repository, agora):
        recipient = fake_repository.add_recipient("camp-1", "ana", enrolled_at=agora)

        updated = await lifecycle.transition_recipient(recipient.id, RecipientStatus.OPTED_OUT, at=agora)

        assert updated.status == RecipientStatus.OPTED_OUT
        assert updated.opted_out_at == agora

    @pytest.mark.asyncio
    async def test_terminal_levanta(self, lifecycle, fake_repository, agora):
        recipient = fake_repository.add_recipient(
            "camp-1", "ana", enrolled_at=agora, status=RecipientStatus.COMPLETED
        )

        with pytest.raises(InvalidTransitionError):
            await lifecycle.transition_recipient(recipient.id, RecipientStatus.OPTED_OUT)

    @pytest.mark.asyncio
    async def test_inexistente(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.transition_recipient("r-x", RecipientStatus.OPTED_OUT)


class TestStatusDeEntrega:
    @pytest.mark.asyncio
    async def test_delivered_incrementa_contador(self, lifecycle, fake_repository, mensagem_enviada, agora):
        message = await lifecycle.apply_delivery_status("m-1", MessageStatus.DELIVERED, at=agora)

        assert message.status == MessageStatus.DELIVERED
        assert message.delivered_at == agora
        assert fake_repository.counters["camp-1"]["total_delivered"] == 1

    @pytest.mark.asyncio
    async def test_callback_repetido_e_no_op(self, lifecycle, fake_repository, mensagem_enviada, agora):
        await lifecycle.apply_delivery_status("m-1", MessageStatus.DELIVERED, at=agora)
        await lifecycle.apply_delivery_status("m-1", MessageStatus.DELIVERED, at=agora)

        assert fake_repository.counters["camp-1"]["total_delivered"] == 1

    @pytest.mark.asyncio
    async def test_regressao_levanta(self, lifecycle, mensagem_enviada, agora):
        await lifecycle.apply_delivery_status("m-1", MessageStatus.DELIVERED, at=agora)

        with pytest.raises(InvalidTransitionError):
            await lifecycle.apply_delivery_status("m-1", MessageStatus.SENT, at=agora)

    @pytest.mark.asyncio
    async def test_bounce_tardio_encerra_destinatario(self, lifecycle, fake_repository, mensagem_enviada, agora):
        message = await lifecycle.apply_delivery_status(
            "m-1", MessageStatus.BOUNCED, at=agora, error="mailbox full"
        )

        assert message.status == MessageStatus.BOUNCED
        assert message.error_message == "mailbox full"
        assert fake_repository.recipient_of("camp-1", "ana").status == RecipientStatus.BOUNCED

    @pytest.mark.asyncio
    async def test_mensagem_inexistente(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.apply_delivery_status("m-x", MessageStatus.DELIVERED)


class TestEngajamento:
    @pytest.mark.asyncio
    async def test_so_primeiro_evento_conta(self, lifecycle, fake_repository, mensagem_enviada, agora):
        primeiro = await lifecycle.record_engagement("m-1", EngagementType.OPENED, at=agora)
        segundo = await lifecycle.record_engagement("m-1", EngagementType.OPENED, at=agora)

        assert primeiro is True
        assert segundo is False
        assert fake_repository.messages["m-1"].opened_at == agora
        assert fake_repository.counters["camp-1"]["total_opened"] == 1

    @pytest.mark.asyncio
    async def test_clique(self, lifecycle, fake_repository, mensagem_enviada, agora):
        await lifecycle.record_engagement("m-1", EngagementType.CLICKED, at=agora)

        assert fake_repository.counters["camp-1"]["total_clicked"] == 1


class TestOptOut:
    @pytest.mark.asyncio
    async def test_encerra_todas_as_matriculas_ativas(self, lifecycle, fake_repository, fake_population, agora):
        fake_population.add("ana")
        fake_repository.add_recipient("camp-1", "ana", enrolled_at=agora)
        fake_repository.add_recipient("camp-2", "ana", enrolled_at=agora)
        fake_repository.add_recipient("camp-3", "ana", enrolled_at=agora, status=RecipientStatus.COMPLETED)

        encerradas = await lifecycle.process_opt_out("ana", "sms_stop", reason="STOP", at=agora)

        assert encerradas == 2
        assert fake_population.customers["ana"].get("marketing_opt_out") is True
        assert fake_population.opt_outs == [("ana", "sms_stop", "STOP")]
        assert fake_repository.recipient_of("camp-3", "ana").status == RecipientStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cliente_inexistente(self, lifecycle, fake_repository):
        with pytest.raises(NotFoundError):
            await lifecycle.process_opt_out("fantasma", "email_link")

    @pytest.mark.asyncio
    async def test_falha_de_escrita_propaga(self, lifecycle, fake_population):
        async def falhar(*args, **kwargs):
            raise DatabaseError("Erro ao registrar opt-out do cliente ana")

        fake_population.mark_opted_out = falhar

        with pytest.raises(DatabaseError):
            await lifecycle.process_opt_out("ana", "sms_stop")


class TestConversao:
    @pytest.mark.asyncio
    async def test_converte_campanhas_com_stop_on_conversion(
        self, lifecycle, fake_repository, nova_campanha, agora
    ):
        fake_repository.add_campaign(nova_campanha("para"))
        fake_repository.add_campaign(
            nova_campanha(
                "continua",
                config=CampaignConfig(
                    steps=[DripStep(0, 0, Channel.SMS, "Oi")], stop_on_conversion=False
                ),
            )
        )
        fake_repository.add_recipient("para", "ana", enrolled_at=agora - timedelta(days=5))
        fake_repository.add_recipient("continua", "ana", enrolled_at=agora - timedelta(days=5))

        convertidas = await lifecycle.record_conversion(
            ConversionEvent(customer_id="ana", kind=ConversionKind.ORDER_PLACED, occurred_at=agora, value=420.0)
        )

        assert convertidas == ["para"]
        recipient = fake_repository.recipient_of("para", "ana")
        assert recipient.status == RecipientStatus.CONVERTED
        assert recipient.converted_at == agora
        assert recipient.conversion_value == 420.0
        assert fake_repository.counters["para"] == {"total_converted": 1, "total_revenue": 420.0}
        assert fake_repository.recipient_of("continua", "ana").status == RecipientStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_ignora_matricula_posterior_ao_evento(self, lifecycle, fake_repository, nova_campanha, agora):
        fake_repository.add_campaign(nova_campanha("para"))
        fake_repository.add_recipient("para", "ana", enrolled_at=agora + timedelta(days=1))

        convertidas = await lifecycle.record_conversion(
            ConversionEvent(customer_id="ana", kind=ConversionKind.APPOINTMENT_BOOKED, occurred_at=agora)
        )

        assert convertidas == []
        assert fake_repository.recipient_of("para", "ana").status == RecipientStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_timestamp_sem_fuso_e_tratado_como_utc(self, lifecycle, fake_repository, nova_campanha, agora):
        fake_repository.add_campaign(nova_campanha("para"))
        fake_repository.add_recipient("para", "ana", enrolled_at=agora - timedelta(days=1))

        convertidas = await lifecycle.record_conversion(
            ConversionEvent(
                customer_id="ana",
                kind=ConversionKind.ORDER_PLACED,
                occurred_at=agora.replace(tzinfo=None),
                value=99.0,
            )
        )

        assert convertidas == ["para"]
        assert fake_repository.recipient_of("para", "ana").converted_at == agora

    @pytest.mark.asyncio
    async def test_timestamp_sem_fuso_anterior_a_matricula(self, lifecycle, fake_repository, nova_campanha, agora):
        fake_repository.add_campaign(nova_campanha("para"))
        fake_repository.add_recipient("para", "ana", enrolled_at=agora)

        convertidas = await lifecycle.record_conversion(
            ConversionEvent(
                customer_id="ana",
                kind=ConversionKind.ORDER_PLACED,
                occurred_at=(agora - timedelta(hours=1)).replace(tzinfo=None),
            )
        )

        assert convertidas == []
