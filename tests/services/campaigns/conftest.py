"""
Fakes em memoria para os testes do motor de campanhas.

O FakeCampaignRepository reproduz a semantica das RPCs transacionais
(commit_campaign_run, finalize_campaign_message, complete_campaign_run)
para que os testes verifiquem idempotencia e avanco de passos sem banco.
"""
import itertools
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from app.core.distributed_lock import LockNotAcquiredError
from app.core.timezone import parse_datetime
from app.services.campaigns.repository import CommitResult
from app.services.campaigns.transport import SendOutcome
from app.services.campaigns.types import (
    Campaign,
    CampaignRecipient,
    CampaignRun,
    CampaignStatus,
    CampaignType,
    Message,
    MessageStatus,
    RecipientStatus,
)
from app.services.segments.aggregates import CustomerSnapshot
from app.services.segments.types import SegmentCriterion, SegmentDefinition


def _aplicar(obj, fields: dict):
    for key, value in fields.items():
        if key == "status":
            value = type(obj.status)(value)
        elif key.endswith("_at"):
            value = parse_datetime(value)
        setattr(obj, key, value)


class FakeCampaignRepository:
    """Repositorio de campanhas em memoria."""

    RECIPIENTS_TABLE = "campaign_recipients"
    MESSAGES_TABLE = "messages"

    def __init__(self):
        self.campaigns: Dict[str, Campaign] = {}
        self.recipients: Dict[str, CampaignRecipient] = {}
        self.messages: Dict[str, Message] = {}
        self.runs: List[CampaignRun] = []
        self.counters: Dict[str, Dict[str, float]] = {}
        self._ids = itertools.count(1)

    def _novo_id(self, prefixo: str) -> str:
        return f"{prefixo}-{next(self._ids)}"

    # -- campanhas ------------------------------------------------------------

    def add_campaign(self, campaign: Campaign) -> Campaign:
        self.campaigns[campaign.id] = campaign
        return campaign

    async def get_by_id(self, campaign_id: str) -> Optional[Campaign]:
        return self.campaigns.get(campaign_id)

    async def get_many(self, campaign_ids) -> Dict[str, Campaign]:
        return {cid: self.campaigns[cid] for cid in set(campaign_ids) if cid in self.campaigns}

    async def list_active(self) -> List[Campaign]:
        return [c for c in self.campaigns.values() if c.is_active]

    async def increment_counters(self, campaign_id: str, **deltas: float) -> bool:
        atual = self.counters.setdefault(campaign_id, {})
        for key, value in deltas.items():
            atual[key] = atual.get(key, 0) + value
        return True

    # -- destinatarios --------------------------------------------------------

    def add_recipient(self, campaign_id: str, customer_id: str, **kwargs) -> CampaignRecipient:
        recipient = CampaignRecipient(
            id=self._novo_id("r"), campaign_id=campaign_id, customer_id=customer_id, **kwargs
        )
        self.recipients[recipient.id] = recipient
        return recipient

    def recipient_of(self, campaign_id: str, customer_id: str) -> Optional[CampaignRecipient]:
        for r in self.recipients.values():
            if r.campaign_id == campaign_id and r.customer_id == customer_id:
                return r
        return None

    async def list_recipients(self, campaign_id: str, status=None) -> List[CampaignRecipient]:
        return [
            replace(r) for r in self.recipients.values()
            if r.campaign_id == campaign_id and (status is None or r.status == status)
        ]

    async def get_recipient(self, recipient_id: str) -> Optional[CampaignRecipient]:
        r = self.recipients.get(recipient_id)
        return replace(r) if r else None

    async def list_active_recipients_for_customer(self, customer_id: str) -> List[CampaignRecipient]:
        return [
            replace(r) for r in self.recipients.values()
            if r.customer_id == customer_id and r.status == RecipientStatus.ACTIVE
        ]

    async def update_recipient_status(self, recipient_id, expected, target, fields=None):
        r = self.recipients.get(recipient_id)
        if r is None or r.status != expected:
            return None
        _aplicar(r, {**(fields or {}), "status": target.value})
        return replace(r)

    async def opt_out_active_recipients(self, customer_id, at) -> int:
        total = 0
        for r in self.recipients.values():
            if r.customer_id == customer_id and r.status == RecipientStatus.ACTIVE:
                r.status = RecipientStatus.OPTED_OUT
                r.opted_out_at = at
                total += 1
        return total

    # -- mensagens ------------------------------------------------------------

    def messages_of(self, campaign_id: str, customer_id: Optional[str] = None) -> List[Message]:
        return [
            m for m in self.messages.values()
            if m.campaign_id == campaign_id and (customer_id is None or m.customer_id == customer_id)
        ]

    async def get_message(self, message_id: str) -> Optional[Message]:
        m = self.messages.get(message_id)
        return replace(m) if m else None

    async def get_message_by_external_id(self, external_id: str) -> Optional[Message]:
        for m in self.messages.values():
            if m.external_id == external_id:
                return replace(m)
        return None

    async def list_pending_messages(self, campaign_id: str) -> List[Message]:
        return [
            replace(m) for m in self.messages.values()
            if m.campaign_id == campaign_id and m.status == MessageStatus.PENDING
        ]

    async def update_message(self, message_id, expected, fields):
        m = self.messages.get(message_id)
        if m is None or m.status != expected:
            return None
        _aplicar(m, fields)
        return replace(m)

    async def stamp_engagement(self, message_id, column, at) -> bool:
        m = self.messages.get(message_id)
        if m is None or getattr(m, column) is not None:
            return False
        setattr(m, column, at)
        return True

    # -- execucoes ------------------------------------------------------------

    async def commit_run(self, campaign_id, run_id, run_at, enroll_customer_ids, messages) -> CommitResult:
        enrolled = 0
        for customer_id in enroll_customer_ids:
            if self.recipient_of(campaign_id, customer_id) is None:
                self.add_recipient(campaign_id, customer_id, enrolled_at=run_at)
                enrolled += 1

        inseridas = []
        for planned in messages:
            r = self.recipient_of(campaign_id, planned.customer_id)
            if r is None or r.status != RecipientStatus.ACTIVE or r.current_step != planned.step_index:
                continue
            message = Message(
                id=self._novo_id("m"),
                campaign_id=campaign_id,
                customer_id=planned.customer_id,
                recipient_id=r.id,
                run_id=run_id,
                step_index=planned.step_index,
                channel=planned.channel,
                subject=planned.subject,
                body=planned.body,
                destination=planned.destination,
                created_at=run_at,
            )
            self.messages[message.id] = message
            inseridas.append(replace(message))

        return CommitResult(enrolled=enrolled, messages=inseridas)

    async def finalize_message(self, message, status, at, total_steps, external_id=None, error=None):
        m = self.messages.get(message.id)
        if m is None or m.status != MessageStatus.PENDING:
            return {"message_updated": False}

        m.status = status
        m.external_id = external_id or m.external_id
        m.error_message = error
        if status == MessageStatus.SENT:
            m.sent_at = at
        else:
            m.failed_at = at

        r = self.recipients.get(m.recipient_id)
        if r is not None and r.status == RecipientStatus.ACTIVE:
            if status == MessageStatus.SENT and r.current_step == m.step_index:
                r.current_step = m.step_index + 1
                r.last_message_at = at
                if r.current_step >= total_steps:
                    r.status = RecipientStatus.COMPLETED
                    r.completed_at = at
            elif status == MessageStatus.BOUNCED:
                r.status = RecipientStatus.BOUNCED

        return {"message_updated": True}

    async def complete_run(self, run: CampaignRun) -> Optional[str]:
        if any(existing.id == run.id for existing in self.runs):
            return run.id
        self.runs.append(run)
        return run.id


class FakePopulation:
    """Populacao de clientes em memoria."""

    def __init__(self):
        self.customers: Dict[str, CustomerSnapshot] = {}
        self.opt_outs: List[tuple] = []

    def add(self, customer_id: str, **kwargs) -> CustomerSnapshot:
        row = {
            "id": customer_id,
            "first_name": customer_id.title(),
            "is_active": True,
            "marketing_opt_out": False,
            "sms_opt_in": True,
            "email_opt_in": True,
            "phone": f"+1416555{len(self.customers):04d}",
            "email": f"{customer_id}@example.com",
        }
        row.update(kwargs)
        snapshot = CustomerSnapshot.from_db_row(row)
        self.customers[customer_id] = snapshot
        return snapshot

    async def load_population(self, filters=(), limit=None) -> List[CustomerSnapshot]:
        return list(self.customers.values())

    async def load_customers(self, customer_ids) -> Dict[str, CustomerSnapshot]:
        return {cid: self.customers[cid] for cid in customer_ids if cid in self.customers}

    async def mark_opted_out(self, customer_id, source, reason, when) -> bool:
        snapshot = self.customers.get(customer_id)
        if snapshot is None:
            return False
        snapshot.attributes["marketing_opt_out"] = True
        self.opt_outs.append((customer_id, source, reason))
        return True


class FakeTransport:
    """Transporte que registra envios e devolve o resultado configurado por destino."""

    def __init__(self):
        self.sent: List[dict] = []
        self.outcomes: Dict[str, object] = {}

    async def send(self, channel, destination, subject, body) -> SendOutcome:
        self.sent.append({"channel": channel, "to": destination, "subject": subject, "body": body})
        outcome = self.outcomes.get(destination)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or SendOutcome.accepted(f"ext-{len(self.sent)}")


class FakeLock:
    """Lock em memoria. `extends_before_loss` simula o TTL expirando no meio da execucao."""

    def __init__(self, available: bool = True, extends_before_loss: Optional[int] = None):
        self.available = available
        self.extends_before_loss = extends_before_loss
        self.acquired = 0
        self.released = 0
        self.extended = 0

    async def acquire(self) -> bool:
        if self.available:
            self.acquired += 1
        return self.available

    async def release(self) -> bool:
        self.released += 1
        return True

    async def extend(self, additional_time=None) -> bool:
        self.extended += 1
        return self.extends_before_loss is None or self.extended <= self.extends_before_loss

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquiredError("lock:fake")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False


def criar_campanha(
    campaign_id: str = "camp-1",
    campaign_type: CampaignType = CampaignType.EXAM_REMINDER,
    status: CampaignStatus = CampaignStatus.ACTIVE,
    criteria: Optional[list] = None,
    **kwargs,
) -> Campaign:
    segment = SegmentDefinition(
        criteria=[SegmentCriterion.from_dict(c) for c in (criteria or [])],
        exclude_recently_contacted_days=None,
    )
    return Campaign(
        id=campaign_id,
        name=f"Campanha {campaign_id}",
        type=campaign_type,
        status=status,
        segment=segment,
        **kwargs,
    )


@pytest.fixture
def fake_repository():
    return FakeCampaignRepository()


@pytest.fixture
def fake_population():
    return FakePopulation()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def fake_lock():
    return FakeLock()


@pytest.fixture
def nova_campanha():
    return criar_campanha
