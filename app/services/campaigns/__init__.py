"""
Modulo de campanhas drip.

Estrutura:
- types: Tipos e enums
- drip: Sequencias padrao e agenda de passos
- templates: Variaveis e interpolacao de mensagens
- transport: Envio de SMS/email
- repository: Acesso ao banco de dados
- lifecycle: Transicoes de destinatario e mensagem
- engine: Execucao de campanhas
"""
from app.services.campaigns.engine import EnrollmentManager, RunResult, enrollment_manager
from app.services.campaigns.lifecycle import RecipientLifecycle, can_contact, recipient_lifecycle
from app.services.campaigns.repository import CampaignRepository, campaign_repository
from app.services.campaigns.types import (
    Campaign,
    CampaignConfig,
    CampaignRecipient,
    CampaignRun,
    CampaignStatus,
    CampaignType,
    ConversionEvent,
    ConversionKind,
    DripStep,
    EngagementType,
    Message,
    MessageStatus,
    RecipientStatus,
)

__all__ = [
    "Campaign",
    "CampaignConfig",
    "CampaignRecipient",
    "CampaignRepository",
    "CampaignRun",
    "CampaignStatus",
    "CampaignType",
    "ConversionEvent",
    "ConversionKind",
    "DripStep",
    "EngagementType",
    "EnrollmentManager",
    "Message",
    "MessageStatus",
    "RecipientLifecycle",
    "RecipientStatus",
    "RunResult",
    "campaign_repository",
    "can_contact",
    "enrollment_manager",
    "recipient_lifecycle",
]
