# /test/test_pool.py
import asyncio

import pytest

from anvil_harness.core.errors import ConfigurationError, SimulatorStartError
from anvil_harness.core.pool import MAX_PORT, ChainServerPool, port_for

from conftest import BrokenSimulator, SlowSimulator


def test_port_is_base_plus_chain_id():
    assert port_for(1, 8545) == 8546
    assert port_for(137, 8545) == 8682


def test_port_wraps_for_large_chain_ids():
    port = port_for(42161 * 3, 8545)
    assert 8545 < port <= MAX_PORT


@pytest.mark.asyncio
async def test_starts_once_and_reuses(settings, factory, started):
    pool = ChainServerPool(settings.fork_configs(), settings, factory)
    try:
        first = await pool.get_or_start(137)
        second = await pool.get_or_start(137)
        assert first is second
        assert len(started) == 1
        assert first.requested_port == port_for(137, settings.BASE_PORT)
        assert 137 in pool
    finally:
        await pool.close()


@pytest.mark.asyncio
async def test_concurrent_starts_of_one_chain_start_one_simulator(settings, factory, started):
    pool = ChainServerPool(settings.fork_configs(), settings, lambda f, p, s: factory(f, p, s, cls=SlowSimulator))
    try:
        a, b = await asyncio.gather(pool.get_or_start(1), pool.get_or_start(1))
        assert a is b
        assert len(started) == 1
    finally:
        await pool.close()


@pytest.mark.asyncio
async def test_unknown_chain_is_a_configuration_error(settings, factory, started):
    pool = ChainServerPool(settings.fork_configs(), settings, factory)
    with pytest.raises(ConfigurationError, match=r"chainId\(5\)"):
        await pool.get_or_start(5)
    assert started == []


@pytest.mark.asyncio
async def test_failed_start_is_not_recorded(settings, factory):
    pool = ChainServerPool(settings.fork_configs(), settings, lambda f, p, s: factory(f, p, s, cls=BrokenSimulator))
    with pytest.raises(SimulatorStartError, match="boom"):
        await pool.get_or_start(1)
    assert 1 not in pool


@pytest.mark.asyncio
async def test_close_shuts_every_simulator_down(settings, factory, started):
    pool = ChainServerPool(settings.fork_configs(), settings, factory)
    await pool.get_or_start(1)
    await pool.get_or_start(137)
    await pool.close()
    assert all(handle.closed for handle in started)
    assert pool.handles == {}
