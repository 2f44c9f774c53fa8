"""
Testes do lock distribuido de execucao de campanha.
"""
import pytest

from app.core.distributed_lock import (
    DistributedLock,
    LockNotAcquiredError,
    campaign_run_lock,
)


class TestDistributedLock:
    @pytest.mark.asyncio
    async def test_adquire_com_set_nx(self, mock_redis):
        lock = DistributedLock("teste", timeout=60, client=mock_redis)

        assert await lock.acquire() is True
        assert lock.acquired
        mock_redis.set.assert_awaited_once_with("lock:teste", lock.token, nx=True, ex=60)

    @pytest.mark.asyncio
    async def test_nao_adquire_se_ocupado(self, mock_redis):
        mock_redis.set.return_value = None
        lock = DistributedLock("teste", client=mock_redis)

        assert await lock.acquire() is False
        assert not lock.acquired

    @pytest.mark.asyncio
    async def test_erro_do_redis_nao_adquire(self, mock_redis):
        mock_redis.set.side_effect = ConnectionError("redis fora")
        lock = DistributedLock("teste", client=mock_redis)

        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_libera_so_com_token_do_dono(self, mock_redis):
        lock = DistributedLock("teste", client=mock_redis)
        await lock.acquire()

        assert await lock.release() is True
        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "lock:teste", lock.token)
        assert not lock.acquired

    @pytest.mark.asyncio
    async def test_lock_expirado_antes_de_liberar(self, mock_redis):
        mock_redis.eval.return_value = 0
        lock = DistributedLock("teste", client=mock_redis)
        await lock.acquire()

        assert await lock.release() is False

    @pytest.mark.asyncio
    async def test_context_manager_libera_apos_erro(self, mock_redis):
        lock = DistributedLock("teste", client=mock_redis)

        with pytest.raises(ValueError):
            async with lock:
                raise ValueError("falha dentro do lock")

        mock_redis.eval.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_context_manager_ocupado_levanta(self, mock_redis):
        mock_redis.set.return_value = None

        with pytest.raises(LockNotAcquiredError):
            async with DistributedLock("teste", client=mock_redis):
                pass

    @pytest.mark.asyncio
    async def test_estende_ttl(self, mock_redis):
        lock = DistributedLock("teste", timeout=60, client=mock_redis)
        await lock.acquire()

        assert await lock.extend(120) is True
        assert mock_redis.eval.await_args.args[-1] == 120


def test_chave_por_campanha(mock_redis):
    lock_a = campaign_run_lock("camp-a", client=mock_redis)
    lock_b = campaign_run_lock("camp-b", client=mock_redis)

    assert lock_a.key == "lock:campaign-run:camp-a"
    assert lock_a.key != lock_b.key
    assert not lock_a.blocking
