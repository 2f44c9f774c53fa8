"""
Fronteira de transporte de mensagens (SMS/email).

`send(channel, destination, subject, body) -> SendOutcome`

Falha de envio e sempre por mensagem: o motor registra e segue.
- hard bounce: destino invalido/permanente -> mensagem e destinatario BOUNCED
- falha soft: erro transitorio -> mensagem FAILED, passo tentado de novo
  na proxima execucao agendada
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import settings
from app.services.http_client import get_http_client
from app.services.segments.types import Channel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendOutcome:
    """Resultado do envio pelo gateway."""

    delivered: bool
    hard_bounce: bool = False
    external_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def accepted(cls, external_id: Optional[str]) -> "SendOutcome":
        return cls(delivered=True, external_id=external_id)

    @classmethod
    def soft_failure(cls, error: str) -> "SendOutcome":
        return cls(delivered=False, error=error)

    @classmethod
    def bounced(cls, error: str) -> "SendOutcome":
        return cls(delivered=False, hard_bounce=True, error=error)


class MessageTransport(Protocol):
    async def send(
        self,
        channel: Channel,
        destination: str,
        subject: Optional[str],
        body: str,
    ) -> SendOutcome: ...


class LoggingTransport:
    """Transporte de desenvolvimento: so registra no log."""

    async def send(
        self,
        channel: Channel,
        destination: str,
        subject: Optional[str],
        body: str,
    ) -> SendOutcome:
        external_id = f"{channel.value.lower()}_log_{uuid.uuid4().hex[:12]}"
        logger.info(
            f"[{channel.value} DISPATCH] para={destination} id={external_id}",
            extra={"channel": channel.value, "subject": subject, "body_chars": len(body)},
        )
        return SendOutcome.accepted(external_id)


class _RetryableGatewayError(Exception):
    """Erro transitorio do gateway (rede, timeout, 5xx, 429)."""


# Status do gateway que indicam destino permanentemente invalido
HARD_BOUNCE_STATUS = frozenset({404, 410, 422})


class HttpMessageTransport:
    """
    Gateway HTTP de SMS/email.

    POST {TRANSPORT_API_URL}/v1/messages
        {"channel": "SMS", "to": "...", "subject": null, "body": "..."}
    Resposta 2xx: {"id": "<external id>"}
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.TRANSPORT_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.TRANSPORT_API_KEY
        self._client = client

    async def send(
        self,
        channel: Channel,
        destination: str,
        subject: Optional[str],
        body: str,
    ) -> SendOutcome:
        payload = {
            "channel": channel.value,
            "to": destination,
            "subject": subject,
            "body": body,
        }

        try:
            response = await self._post(payload)
        except _RetryableGatewayError as e:
            logger.warning(f"[HttpTransport] Falha transitoria para {channel.value}: {e}")
            return SendOutcome.soft_failure(str(e))

        if response.status_code in HARD_BOUNCE_STATUS:
            return SendOutcome.bounced(f"HTTP {response.status_code}: {response.text[:200]}")

        if response.is_error:
            return SendOutcome.soft_failure(f"HTTP {response.status_code}: {response.text[:200]}")

        data = response.json() if response.content else {}
        if data.get("hard_bounce"):
            return SendOutcome.bounced(data.get("error") or "hard bounce")

        return SendOutcome.accepted(data.get("id"))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(_RetryableGatewayError),
        reraise=True,
    )
    async def _post(self, payload: dict) -> httpx.Response:
        client = self._client or await get_http_client()
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = await client.post(f"{self.base_url}/v1/messages", json=payload, headers=headers)
        except httpx.TransportError as e:
            raise _RetryableGatewayError(f"{type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise _RetryableGatewayError(f"HTTP {response.status_code}")
        return response


def get_transport() -> MessageTransport:
    """Transporte conforme TRANSPORT_MODE."""
    if settings.transport_http_enabled:
        return HttpMessageTransport()
    return LoggingTransport()
