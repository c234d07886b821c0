# /test/test_proxy.py
import json

import aiohttp
import pytest

from anvil_harness.core.coordinator import SwitchCoordinator
from anvil_harness.core.logger import FORWARD_ERRORS, REQUESTS_FORWARDED
from anvil_harness.core.pool import ChainServerPool
from anvil_harness.core.proxy import INTERNAL_ERROR, INVALID_PARAMS, UNRECOGNIZED_CHAIN, ForwardingProxy


@pytest.mark.asyncio
async def test_requests_reach_the_active_simulator(harness, rpc):
    before = REQUESTS_FORWARDED._value.get()
    status, body = await rpc(harness.url, "eth_chainId", request_id=7)
    assert status == 200
    assert body == {"jsonrpc": "2.0", "id": 7, "result": "0x1"}
    assert REQUESTS_FORWARDED._value.get() == before + 1


@pytest.mark.asyncio
async def test_switch_chain_is_answered_locally_and_retargets(harness, rpc):
    status, body = await rpc(harness.url, "wallet_switchEthereumChain", [{"chainId": "0x89"}], request_id=3)
    assert status == 200
    assert body == {"jsonrpc": "2.0", "id": 3, "result": None}
    assert harness.chain_id == 137

    _, body = await rpc(harness.url, "eth_chainId")
    assert body["result"] == "0x89"
    # The switch itself never reached a simulator.
    assert all("wallet_switchEthereumChain" not in h.calls for h in harness.pool.handles.values())


@pytest.mark.asyncio
async def test_switch_to_unknown_chain_returns_4902(harness, rpc):
    _, body = await rpc(harness.url, "wallet_switchEthereumChain", [{"chainId": "0x5"}])
    assert body["error"]["code"] == UNRECOGNIZED_CHAIN
    assert body["error"]["message"] == "No fork configured for chainId(5)"
    assert harness.chain_id == 1


@pytest.mark.asyncio
async def test_switch_with_malformed_params_is_rejected(harness, rpc):
    _, body = await rpc(harness.url, "wallet_switchEthereumChain", [])
    assert body["error"]["code"] == INVALID_PARAMS
    assert harness.chain_id == 1


@pytest.mark.asyncio
async def test_batches_are_forwarded_untouched(harness):
    batch = [
        {"jsonrpc": "2.0", "id": 1, "method": "eth_chainId", "params": []},
        {"jsonrpc": "2.0", "id": 2, "method": "eth_blockNumber", "params": []},
    ]
    async with aiohttp.ClientSession() as session:
        async with session.post(harness.url, json=batch) as resp:
            body = await resp.json()
    assert [r["id"] for r in body] == [1, 2]
    assert body[0]["result"] == "0x1"


@pytest.mark.asyncio
async def test_unreachable_simulator_yields_gateway_error(harness, rpc):
    before = FORWARD_ERRORS._value.get()
    await harness.coordinator.active_handle()._shutdown()
    status, body = await rpc(harness.url, "eth_blockNumber", request_id=9)
    assert status == 502
    assert body["id"] == 9
    assert body["error"]["code"] == INTERNAL_ERROR
    assert FORWARD_ERRORS._value.get() == before + 1


@pytest.mark.asyncio
async def test_no_active_simulator_yields_gateway_error(settings, factory, rpc):
    forks = settings.fork_configs()
    coordinator = SwitchCoordinator(ChainServerPool(forks, settings, factory), forks, 1)
    proxy = ForwardingProxy(coordinator, "127.0.0.1", 0)
    await proxy.start()
    try:
        status, body = await rpc(proxy.url, "eth_chainId")
        assert status == 502
        assert body["error"]["message"] == "No active simulator"
    finally:
        await proxy.close()


@pytest.mark.asyncio
async def test_chain_identity_follows_switches_without_a_third_simulator(harness, rpc, started):
    await harness.reset(137)
    _, body = await rpc(harness.url, "eth_chainId")
    assert body["result"] == "0x89"

    await harness.reset(1)
    _, body = await rpc(harness.url, "eth_chainId")
    assert body["result"] == "0x1"
    assert len(started) == 2


@pytest.mark.asyncio
async def test_bodies_over_a_megabyte_are_forwarded(harness):
    batch = [{"jsonrpc": "2.0", "id": i, "method": "eth_chainId", "params": []} for i in range(40000)]
    body = json.dumps(batch).encode()
    assert len(body) > 2 * 1024 * 1024
    async with aiohttp.ClientSession() as session:
        async with session.post(harness.url, data=body, headers={"Content-Type": "application/json"}) as resp:
            assert resp.status == 200
            answers = await resp.json()
    assert len(answers) == len(batch)
    assert answers[-1] == {"jsonrpc": "2.0", "id": 39999, "result": "0x1"}


@pytest.mark.asyncio
async def test_switch_onto_unreachable_simulator_returns_json_rpc_error(harness, rpc):
    await harness.coordinator.active_handle()._shutdown()
    status, body = await rpc(harness.url, "wallet_switchEthereumChain", [{"chainId": "0x1"}], request_id=4)
    assert status == 200
    assert body["id"] == 4
    assert body["error"]["code"] == INTERNAL_ERROR
    assert "unreachable" in body["error"]["message"]
