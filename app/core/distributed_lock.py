"""
Distributed Lock - Lock distribuído via Redis.

Serializa execucoes da mesma campanha entre workers: duas execucoes
concorrentes da mesma campanha nunca rodam ao mesmo tempo. Campanhas
diferentes usam chaves diferentes e rodam em paralelo.

Uso:
    async with campaign_run_lock(campaign_id):
        await executar_campanha()
"""
import asyncio
import uuid
import logging
from typing import Optional

from app.core.config import CampaignsConfig
from app.services.redis import redis_client

logger = logging.getLogger(__name__)

# Libera somente se o valor ainda for o token do dono
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
else
    return 0
end
"""


class LockNotAcquiredError(Exception):
    """Lock ja pertence a outro processo."""

    def __init__(self, key: str):
        super().__init__(f"Lock nao adquirido: {key}")
        self.key = key


class DistributedLock:
    """
    Lock distribuído usando Redis (SET NX EX + Lua para liberar).

    Attributes:
        key: Chave Redis do lock (prefixo "lock:")
        timeout: TTL em segundos, evita lock orfao se o worker morrer
        token: Identifica o dono; so o dono libera ou estende
    """

    def __init__(
        self,
        key: str,
        timeout: int = 300,
        blocking: bool = False,
        blocking_timeout: int = 30,
        client=None,
    ):
        self.key = f"lock:{key}"
        self.timeout = timeout
        self.blocking = blocking
        self.blocking_timeout = blocking_timeout
        self.token = str(uuid.uuid4())
        self._client = client or redis_client
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> bool:
        """
        Tenta adquirir o lock.

        Returns:
            True se adquiriu, False se não conseguiu
        """
        if not self.blocking:
            return await self._try_acquire()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.blocking_timeout
        while loop.time() < deadline:
            if await self._try_acquire():
                return True
            await asyncio.sleep(0.1)
        return False

    async def _try_acquire(self) -> bool:
        try:
            result = await self._client.set(self.key, self.token, nx=True, ex=self.timeout)
        except Exception as e:
            logger.error(f"[DistributedLock] Erro ao adquirir lock {self.key}: {e}")
            return False

        self._acquired = bool(result)
        if self._acquired:
            logger.debug(f"[DistributedLock] Lock adquirido: {self.key}")
        return self._acquired

    async def release(self) -> bool:
        """
        Libera o lock se ainda for o dono.

        Returns:
            True se liberou, False se já tinha expirado ou não era dono
        """
        if not self._acquired:
            return True

        try:
            result = await self._client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except Exception as e:
            logger.error(f"[DistributedLock] Erro ao liberar lock {self.key}: {e}")
            return False
        finally:
            self._acquired = False

        if result == 1:
            logger.debug(f"[DistributedLock] Lock liberado: {self.key}")
            return True
        logger.warning(f"[DistributedLock] Lock expirou antes de liberar: {self.key}")
        return False

    async def extend(self, additional_time: Optional[int] = None) -> bool:
        """Estende o TTL do lock se ainda for dono."""
        if not self._acquired:
            return False

        try:
            result = await self._client.eval(
                _EXTEND_SCRIPT, 1, self.key, self.token, additional_time or self.timeout
            )
            return result == 1
        except Exception as e:
            logger.error(f"[DistributedLock] Erro ao estender lock {self.key}: {e}")
            return False

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquiredError(self.key)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release()
        return False


def campaign_run_lock(campaign_id: str, client=None) -> DistributedLock:
    """Lock nao bloqueante de execucao de uma campanha."""
    return DistributedLock(
        f"campaign-run:{campaign_id}",
        timeout=CampaignsConfig.RUN_LOCK_TIMEOUT,
        client=client,
    )
