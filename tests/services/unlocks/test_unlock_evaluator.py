"""
Testes do avaliador de gatilhos dos cards de desbloqueio.

O repository e substituido por uma versao em memoria que reproduz o
update condicional por status.
"""
import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from unittest.mock import patch

import pytest

from app.core.exceptions import InvalidTransitionError, NotFoundError
from app.services.unlocks.evaluator import UnlockEvaluator
from app.services.unlocks.types import (
    OrderCount,
    ReferralCount,
    StyleQuizCompleted,
    UnlockCard,
    UnlockCardStatus,
    parse_trigger_rule,
)


class FakeUnlockRepository:
    def __init__(self):
        self.cards = {}
        self.members = {}
        self.referrals = 0
        self.orders = 0
        self.future_appointment = False
        self.fail_on_update = set()
        self.loads = {"referrals": 0, "orders": 0}

    def add_card(self, card_id, family_id="fam-1", **kwargs) -> UnlockCard:
        card = UnlockCard(id=card_id, family_id=family_id, title=f"Card {card_id}", **kwargs)
        self.cards[card_id] = card
        return card

    async def list_locked_with_rule(self, family_id):
        return [
            c for c in self.cards.values()
            if c.family_id == family_id
            and c.status == UnlockCardStatus.LOCKED
            and (c.trigger_rule or c.raw_trigger_rule)
        ]

    async def list_family_cards(self, family_id):
        return [c for c in self.cards.values() if c.family_id == family_id]

    async def get_card(self, card_id):
        return self.cards.get(card_id)

    async def update_card(self, card_id, fields, expected_status=None):
        if card_id in self.fail_on_update:
            raise RuntimeError("falha simulada")
        card = self.cards.get(card_id)
        if card is None:
            return None
        if expected_status is not None and card.status != expected_status:
            return None
        changes = dict(fields)
        if "status" in changes:
            changes["status"] = UnlockCardStatus(changes["status"])
        for key in ("unlocked_at", "claimed_at"):
            changes.pop(key, None)
        updated = replace(card, **changes)
        self.cards[card_id] = updated
        return updated

    async def expire_past_due(self, now):
        expirados = []
        for card in list(self.cards.values()):
            vencido = card.expires_at is not None and card.expires_at < now
            if vencido and card.status in (UnlockCardStatus.LOCKED, UnlockCardStatus.UNLOCKED):
                self.cards[card.id] = replace(card, status=UnlockCardStatus.EXPIRED)
                expirados.append(card.id)
        return expirados

    async def list_active_members(self, family_id):
        return self.members.get(family_id, [])

    async def count_qualifying_referrals(self, member_ids):
        self.loads["referrals"] += 1
        return self.referrals

    async def count_picked_up_orders(self, member_ids):
        self.loads["orders"] += 1
        return self.orders

    async def has_future_appointment(self, member_ids, now):
        return self.future_appointment


@pytest.fixture
def repository():
    repo = FakeUnlockRepository()
    repo.members["fam-1"] = [
        {"id": "ana", "style_profile": None},
        {"id": "bia", "style_profile": None},
    ]
    return repo


@pytest.fixture
def evaluator(repository):
    return UnlockEvaluator(repository=repository)


@pytest.fixture
def mock_audit():
    with patch("app.services.audit.record") as mock:
        yield mock


class TestRegras:
    def test_parse_regras_validas(self):
        assert parse_trigger_rule({"type": "REFERRAL_COUNT", "threshold": 2}) == ReferralCount(2)
        assert parse_trigger_rule({"type": "ORDER_COUNT", "threshold": 3}) == OrderCount(3)
        assert parse_trigger_rule({"type": "STYLE_QUIZ_COMPLETED"}) == StyleQuizCompleted()

    def test_parse_regras_invalidas(self):
        assert parse_trigger_rule(None) is None
        assert parse_trigger_rule({"type": "BIRTHDAY"}) is None
        assert parse_trigger_rule({"type": "REFERRAL_COUNT"}) is None
        assert parse_trigger_rule({"type": "ORDER_COUNT", "threshold": 0}) is None
        assert parse_trigger_rule({"type": "ORDER_COUNT", "threshold": True}) is None

    def test_card_do_banco_com_regra(self):
        card = UnlockCard.from_db_row(
            {
                "id": "card-1",
                "family_id": "fam-1",
                "title": "Free cleaning kit",
                "status": "LOCKED",
                "trigger_rule": {"type": "REFERRAL_COUNT", "threshold": 2},
                "value": "25",
            }
        )

        assert card.trigger_rule == ReferralCount(2)
        assert card.value == 25.0
        assert card.to_dict()["status"] == "LOCKED"


class TestAvaliacao:
    @pytest.mark.asyncio
    async def test_uma_indicacao_so_atualiza_progresso(self, evaluator, repository, agora):
        repository.add_card("card-1", trigger_rule=ReferralCount(2), progress_goal=2)
        repository.referrals = 1

        evaluation = await evaluator.check_and_unlock_cards("fam-1", now=agora)

        card = repository.cards["card-1"]
        assert card.status == UnlockCardStatus.LOCKED
        assert card.progress == 1
        assert evaluation.evaluated == 1
        assert evaluation.progressed == 1
        assert evaluation.unlocked == 0

    @pytest.mark.asyncio
    async def test_duas_indicacoes_desbloqueiam(self, evaluator, repository, agora):
        repository.add_card("card-1", trigger_rule=ReferralCount(2), progress=1)
        repository.referrals = 2

        evaluation = await evaluator.check_and_unlock_cards("fam-1", now=agora)

        card = repository.cards["card-1"]
        assert card.status == UnlockCardStatus.UNLOCKED
        assert card.unlocked_by == "system"
        assert card.progress == 2
        assert evaluation.unlocked == 1

    @pytest.mark.asyncio
    async def test_card_ja_desbloqueado_nao_e_tocado(self, evaluator, repository, agora):
        repository.add_card(
            "card-1", trigger_rule=ReferralCount(2), status=UnlockCardStatus.UNLOCKED, unlocked_by="admin-1"
        )
        repository.referrals = 5

        evaluation = await evaluator.check_and_unlock_cards("fam-1", now=agora)

        assert evaluation.evaluated == 0
        assert repository.cards["card-1"].unlocked_by == "admin-1"

    @pytest.mark.asyncio
    async def test_quiz_de_estilo_de_qualquer_membro(self, evaluator, repository, agora):
        repository.add_card("quiz", trigger_rule=StyleQuizCompleted())
        repository.members["fam-1"][1]["style_profile"] = {"shape": "round"}

        await evaluator.check_and_unlock_cards("fam-1", now=agora)

        assert repository.cards["quiz"].status == UnlockCardStatus.UNLOCKED

    @pytest.mark.asyncio
    async def test_estado_carregado_uma_vez_por_avaliacao(self, evaluator, repository, agora):
        repository.add_card("a", trigger_rule=OrderCount(3))
        repository.add_card("b", trigger_rule=OrderCount(5))
        repository.orders = 3

        await evaluator.check_and_unlock_cards("fam-1", now=agora)

        assert repository.loads["orders"] == 1
        assert repository.cards["a"].status == UnlockCardStatus.UNLOCKED
        assert repository.cards["b"].progress == 3

    @pytest.mark.asyncio
    async def test_erro_em_um_card_nao_impede_os_outros(self, evaluator, repository, agora):
        repository.add_card("quebrado", trigger_rule=OrderCount(1))
        repository.add_card("ok", trigger_rule=ReferralCount(1))
        repository.orders = 1
        repository.referrals = 1
        repository.fail_on_update.add("quebrado")

        evaluation = await evaluator.check_and_unlock_cards("fam-1", now=agora)

        assert evaluation.errors == 1
        assert evaluation.unlocked == 1
        assert repository.cards["ok"].status == UnlockCardStatus.UNLOCKED

    @pytest.mark.asyncio
    async def test_regra_invalida_e_logada_e_isolada(self, evaluator, repository, caplog, agora):
        repository.add_card("torto", raw_trigger_rule={"type": "ORDER_COUNT", "threshold": 0})
        repository.add_card("ok", trigger_rule=OrderCount(1))
        repository.orders = 1

        with caplog.at_level(logging.WARNING, logger="app.services.unlocks.evaluator"):
            evaluation = await evaluator.check_and_unlock_cards("fam-1", now=agora)

        assert evaluation.errors == 1
        assert evaluation.evaluated == 1
        assert evaluation.unlocked == 1
        assert repository.cards["torto"].status == UnlockCardStatus.LOCKED
        assert "torto" in caplog.text

    @pytest.mark.asyncio
    async def test_falha_ao_carregar_nunca_levanta(self, evaluator, repository, agora):
        async def explode(family_id):
            raise RuntimeError("banco fora")

        repository.list_locked_with_rule = explode

        evaluation = await evaluator.check_and_unlock_cards("fam-1", now=agora)

        assert evaluation.errors == 1
        assert evaluation.evaluated == 0

    @pytest.mark.asyncio
    async def test_agendamento_em_background(self, evaluator, repository):
        repository.add_card("quiz", trigger_rule=StyleQuizCompleted())
        repository.members["fam-1"][0]["style_profile"] = {"shape": "oval"}

        task = evaluator.schedule_unlock_check("fam-1")
        await asyncio.wait_for(task, timeout=1)

        assert repository.cards["quiz"].status == UnlockCardStatus.UNLOCKED
        assert evaluator.schedule_unlock_check(None) is None


class TestOperacoesAdministrativas:
    @pytest.mark.asyncio
    async def test_override_auditado(self, evaluator, repository, mock_audit, agora):
        repository.add_card("card-1", trigger_rule=ReferralCount(2))

        card = await evaluator.override_card_status("card-1", UnlockCardStatus.UNLOCKED, "admin-1", now=agora)

        assert card.status == UnlockCardStatus.UNLOCKED
        assert card.unlocked_by == "admin-1"
        mock_audit.assert_called_once()
        args = mock_audit.call_args.args
        assert args[0] == "admin-1"
        assert args[3] == "card-1"
        assert args[4] == {"from": "LOCKED", "to": "UNLOCKED"}

    @pytest.mark.asyncio
    async def test_override_card_inexistente(self, evaluator, mock_audit):
        with pytest.raises(NotFoundError):
            await evaluator.override_card_status("card-x", UnlockCardStatus.EXPIRED, "admin-1")

        mock_audit.assert_not_called()

    @pytest.mark.asyncio
    async def test_resgate_de_card_desbloqueado(self, evaluator, repository, mock_audit, agora):
        repository.add_card("card-1", status=UnlockCardStatus.UNLOCKED)

        card = await evaluator.claim_card("card-1", "staff-1", now=agora)

        assert card.status == UnlockCardStatus.CLAIMED
        mock_audit.assert_called_once()

    @pytest.mark.asyncio
    async def test_resgate_de_card_bloqueado_levanta(self, evaluator, repository, mock_audit):
        repository.add_card("card-1", trigger_rule=ReferralCount(2))

        with pytest.raises(InvalidTransitionError):
            await evaluator.claim_card("card-1", "staff-1")

        assert repository.cards["card-1"].status == UnlockCardStatus.LOCKED

    @pytest.mark.asyncio
    async def test_expira_vencidos(self, evaluator, repository, agora):
        repository.add_card("vencido", expires_at=agora - timedelta(days=1))
        repository.add_card("resgatado", status=UnlockCardStatus.CLAIMED, expires_at=agora - timedelta(days=1))
        repository.add_card("valido", expires_at=agora + timedelta(days=10))

        expirados = await evaluator.expire_cards(now=agora)

        assert expirados == ["vencido"]
        assert repository.cards["resgatado"].status == UnlockCardStatus.CLAIMED
        assert repository.cards["valido"].status == UnlockCardStatus.LOCKED

    @pytest.mark.asyncio
    async def test_lista_cards_da_familia(self, evaluator, repository):
        repository.add_card("a")
        repository.add_card("b", family_id="fam-2")

        cards = await evaluator.list_family_cards("fam-1")

        assert [c.id for c in cards] == ["a"]
