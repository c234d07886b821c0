# /test/conftest.py
# Fake simulators: SimulatorHandle subclasses that serve a tiny in-memory
# chain over aiohttp instead of launching anvil.
import asyncio

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web

from anvil_harness.core.config import ForkConfig, Settings
from anvil_harness.core.errors import SimulatorStartError
from anvil_harness.core.harness import setup
from anvil_harness.core.simulator import SimulatorHandle

ONE_ETHER = 10**18
DEFAULT_BALANCE = 10000 * ONE_ETHER
MAINNET_FORK_BLOCK = 17023328
POLYGON_FORK_BLOCK = 41000000


class FakeSimulator(SimulatorHandle):
    """Answers the JSON-RPC methods the harness and the tests use."""
    start_delay = 0.0

    def __init__(self, fork, port, settings):
        super().__init__(fork, port, settings)
        self.requested_port = port
        self.block_number = fork.block_number or 0
        self.balances = {}
        self.calls = []
        self.resets = 0
        self.closed = False
        self._runner = None

    async def _launch(self):
        await asyncio.sleep(self.start_delay)
        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_post("/", self._handle)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, 0)
        await site.start()
        self.port = self._runner.addresses[0][1]

    async def _shutdown(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self.closed = True

    async def _handle(self, request):
        payload = await request.json()
        if isinstance(payload, list):
            return web.json_response([self._answer(p) for p in payload])
        return web.json_response(self._answer(payload))

    def _answer(self, payload):
        method, params = payload["method"], payload.get("params") or []
        self.calls.append(method)
        try:
            result = self._dispatch(method, params)
        except KeyError:
            return {"jsonrpc": "2.0", "id": payload.get("id"), "error": {"code": -32601, "message": f"Method {method} not found"}}
        return {"jsonrpc": "2.0", "id": payload.get("id"), "result": result}

    def _dispatch(self, method, params):
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_blockNumber":
            return hex(self.block_number)
        if method == "evm_mine":
            self.block_number += 1
            return "0x0"
        if method == "anvil_mine":
            self.block_number += int(params[0], 16) if params else 1
            return None
        if method == "anvil_reset":
            self.resets += 1
            self.block_number = params[0]["forking"].get("blockNumber", 0)
            self.balances.clear()
            return None
        if method in ("evm_setAutomine", "evm_setIntervalMining", "anvil_setLoggingEnabled"):
            return None
        if method == "anvil_setBalance":
            self.balances[params[0].lower()] = int(params[1], 16)
            return None
        if method == "eth_getBalance":
            return hex(self.balances.get(params[0].lower(), DEFAULT_BALANCE))
        raise KeyError(method)


class SlowSimulator(FakeSimulator):
    start_delay = 0.2


class BrokenSimulator(FakeSimulator):
    async def _launch(self):
        raise SimulatorStartError(f"Simulator for chainId({self.chain_id}) exited with code 1: boom")


def make_settings(**overrides):
    values = dict(
        DEFAULT_CHAIN_ID=1,
        JSON_RPC_PROVIDER=None,
        FORKS={
            1: ForkConfig(chain_id=1, url="http://mainnet.invalid", block_number=MAINNET_FORK_BLOCK),
            137: ForkConfig(chain_id=137, url="http://polygon.invalid", block_number=POLYGON_FORK_BLOCK),
        },
        PROXY_PORT=0,
        ACCOUNT_COUNT=2,
        SIMULATOR_START_TIMEOUT=5.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def started():
    """Every simulator handle the factory created, in order."""
    return []


@pytest.fixture
def factory(started):
    def make(fork, port, settings, cls=FakeSimulator):
        handle = cls(fork, port, settings)
        started.append(handle)
        return handle
    return make


@pytest_asyncio.fixture
async def harness(settings, factory):
    h = await setup(settings, simulator_factory=factory)
    yield h
    await h.close()


@pytest.fixture
def rpc():
    async def call(url, method, params=None, request_id=1):
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as resp:
                return resp.status, await resp.json(content_type=None)
    return call
