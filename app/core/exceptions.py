"""
Exceptions customizadas do nucleo de marketing.

Hierarquia:
    MarketingException
    ├── DatabaseError
    ├── ExternalAPIError
    ├── ValidationError
    │   └── InvalidTransitionError
    ├── NotFoundError
    ├── ConfigurationError
    │   └── SegmentCompileError
    │       └── UnknownSegmentFieldError
    └── CampaignRunInProgressError
"""
from typing import Optional


class MarketingException(Exception):
    """Base exception para todos os erros do sistema."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(MarketingException):
    """Erro de banco de dados (Supabase)."""
    pass


class ExternalAPIError(MarketingException):
    """Erro de API externa (gateway SMS/email)."""

    def __init__(
        self,
        message: str,
        service: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.service = service
        super().__init__(message, details, original_error)


class ValidationError(MarketingException):
    """Erro de validacao de dados de entrada."""
    pass


class InvalidTransitionError(ValidationError):
    """Transicao de status nao permitida pela maquina de estados."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            f"Transicao invalida de {entity}: {current} -> {target}",
            {"entity": entity, "from": current, "to": target},
        )
        self.current = current
        self.target = target


class NotFoundError(MarketingException):
    """Recurso nao encontrado."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None
    ):
        message = f"{resource} nao encontrado"
        details = {}
        if identifier:
            details["id"] = identifier
        super().__init__(message, details)


class ConfigurationError(MarketingException):
    """Erro de configuracao (campanha, segmento, ambiente)."""
    pass


class SegmentCompileError(ConfigurationError):
    """Criterio de segmento invalido. Sempre nomeia o campo ofensor."""

    def __init__(self, field: str, reason: str, index: Optional[int] = None):
        details = {"field": field}
        if index is not None:
            details["criterion_index"] = index
        super().__init__(f"Criterio invalido no campo '{field}': {reason}", details)
        self.field = field
        self.reason = reason


class UnknownSegmentFieldError(SegmentCompileError):
    """Campo de segmento inexistente no registro."""

    def __init__(self, field: str, index: Optional[int] = None):
        super().__init__(field, "campo desconhecido", index)


class CampaignRunInProgressError(MarketingException):
    """Outra execucao da mesma campanha detem o lock."""

    def __init__(self, campaign_id: str):
        super().__init__(
            "Campanha ja esta em execucao",
            {"campaign_id": campaign_id},
        )
        self.campaign_id = campaign_id
