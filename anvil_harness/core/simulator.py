# /anvil_harness/core/simulator.py
# Adapter around one anvil process forking one chain.
import asyncio
import itertools
from collections import deque
from typing import Any, Deque, List

import aiohttp

from anvil_harness.core.config import ForkConfig, Settings
from anvil_harness.core.decorators import TRANSIENT_NETWORK_ERRORS, poll_until, retriable_network_call
from anvil_harness.core.errors import RpcError, SimulatorStartError
from anvil_harness.core.logger import SIMULATORS_STARTED, get_logger

log = get_logger(__name__)

PROBE_TIMEOUT = aiohttp.ClientTimeout(total=2)
SHUTDOWN_GRACE_SECONDS = 5
STDERR_TAIL_LINES = 50
STDERR_FLUSH_SECONDS = 1


async def _port_in_use(host: str, port: int) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=1)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    await writer.wait_closed()
    return True


class SimulatorHandle:
    """A running simulator forked from `fork`, listening on `host:port`."""

    def __init__(self, fork: ForkConfig, port: int, settings: Settings):
        self.fork = fork
        self.chain_id = fork.chain_id
        self.host = settings.SIMULATOR_HOST
        self.port = port
        self.settings = settings
        self.process: asyncio.subprocess.Process | None = None
        self._session: aiohttp.ClientSession | None = None
        self._ids = itertools.count(1)
        self.stderr_tail: Deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def command(self) -> List[str]:
        s = self.settings
        cmd = [
            s.SIMULATOR_BINARY,
            "--host", self.host,
            "--port", str(self.port),
            "--chain-id", str(self.chain_id),
            "--fork-url", self.fork.url,
            "--mnemonic", s.ACCOUNT_MNEMONIC,
            "--derivation-path", f"{s.DERIVATION_PATH}/",
            "--accounts", str(s.ACCOUNT_COUNT),
            "--balance", str(s.ACCOUNT_BALANCE),
        ]
        if self.fork.block_number is not None:
            cmd += ["--fork-block-number", str(self.fork.block_number)]
        for name, value in self.fork.http_headers.items():
            cmd += ["--fork-header", f"{name}: {value}"]
        if s.MINING_INTERVAL:
            cmd += ["--block-time", str(s.MINING_INTERVAL)]
        elif not s.AUTOMINE:
            cmd.append("--no-mining")
        if not s.LOGGING_ENABLED:
            cmd.append("--silent")
        return cmd

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def request(self, method: str, params: List[Any] | None = None, timeout: aiohttp.ClientTimeout | None = None) -> Any:
        """Performs one JSON-RPC call against the simulator."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        kwargs = {"timeout": timeout} if timeout is not None else {}
        async with self._http().post(self.url, json=payload, **kwargs) as resp:
            body = await resp.json(content_type=None)
        if "error" in body:
            raise RpcError.from_response(body["error"])
        return body.get("result")

    async def start(self):
        """Launches the simulator and waits until it answers JSON-RPC."""
        log.info("SIMULATOR_STARTING", chain_id=self.chain_id, port=self.port, block_number=self.fork.block_number)
        await self._launch()
        try:
            await self.wait_until_ready(self.settings.SIMULATOR_START_TIMEOUT)
        except BaseException:
            await self.close()
            raise
        SIMULATORS_STARTED.labels(str(self.chain_id)).inc()
        log.info("SIMULATOR_READY", chain_id=self.chain_id, url=self.url)

    async def _launch(self):
        if await _port_in_use(self.host, self.port):
            raise SimulatorStartError(f"Port {self.port} for chainId({self.chain_id}) is already in use")
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command(),
                stdout=None if self.settings.LOGGING_ENABLED else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SimulatorStartError(f"Could not launch {self.settings.SIMULATOR_BINARY}: {e}") from e
        self._stderr_task = asyncio.create_task(self._drain_stderr())

    async def _drain_stderr(self):
        # A full pipe would block the simulator, so stderr is read for its whole life.
        async for line in self.process.stderr:
            text = line.decode(errors="replace").rstrip()
            self.stderr_tail.append(text)
            log.debug("SIMULATOR_STDERR", chain_id=self.chain_id, line=text)

    async def _check_alive(self):
        if self.process is not None and self.process.returncode is not None:
            if self._stderr_task is not None:
                await asyncio.wait({self._stderr_task}, timeout=STDERR_FLUSH_SECONDS)
            stderr = "\n".join(self.stderr_tail)
            raise SimulatorStartError(
                f"Simulator for chainId({self.chain_id}) exited with code {self.process.returncode}: {stderr}"
            )

    async def wait_until_ready(self, timeout: float):
        try:
            async for attempt in poll_until(timeout):
                with attempt:
                    await self._check_alive()
                    await self.request("eth_chainId", timeout=PROBE_TIMEOUT)
        except TRANSIENT_NETWORK_ERRORS as e:
            raise SimulatorStartError(
                f"Simulator for chainId({self.chain_id}) was not ready after {timeout}s"
            ) from e

    async def reset(self):
        """Re-forks in place at the configured block and restores the mining mode."""
        try:
            await self._refork()
        except aiohttp.ClientError as e:
            raise SimulatorStartError(f"Simulator for chainId({self.chain_id}) is unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise SimulatorStartError(f"Simulator for chainId({self.chain_id}) did not answer the reset") from e

    @retriable_network_call
    async def _refork(self):
        forking = {"jsonRpcUrl": self.fork.url}
        if self.fork.block_number is not None:
            forking["blockNumber"] = self.fork.block_number
        await self.request("anvil_reset", [{"forking": forking}])
        await self.request("evm_setIntervalMining", [self.settings.MINING_INTERVAL or 0])
        await self.request("evm_setAutomine", [self.settings.AUTOMINE])
        await self.wait_until_ready(self.settings.SIMULATOR_START_TIMEOUT)

    async def _shutdown(self):
        if self.process is None or self.process.returncode is not None:
            return
        self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=SHUTDOWN_GRACE_SECONDS)
        except asyncio.TimeoutError:
            log.warning("SIMULATOR_KILL_AFTER_TIMEOUT", chain_id=self.chain_id)
            self.process.kill()
            await self.process.wait()

    async def close(self):
        await self._shutdown()
        if self._stderr_task is not None:
            await asyncio.wait({self._stderr_task}, timeout=STDERR_FLUSH_SECONDS)
            self._stderr_task.cancel()
            self._stderr_task = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        log.info("SIMULATOR_CLOSED", chain_id=self.chain_id)
