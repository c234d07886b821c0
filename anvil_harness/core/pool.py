# /anvil_harness/core/pool.py
# One simulator per chain id, started lazily and kept for the whole run.
import asyncio
from typing import Callable, Dict

from anvil_harness.core.config import ForkConfig, Settings
from anvil_harness.core.errors import ConfigurationError
from anvil_harness.core.logger import get_logger
from anvil_harness.core.simulator import SimulatorHandle

log = get_logger(__name__)

MAX_PORT = 65535

SimulatorFactory = Callable[[ForkConfig, int, Settings], SimulatorHandle]


def port_for(chain_id: int, base_port: int) -> int:
    """Local port of the simulator for `chain_id`.

    `base_port + chain_id`, wrapped back into (base_port, 65535] for chain ids
    that would overflow the port range.
    """
    port = base_port + chain_id
    if port > MAX_PORT:
        port = base_port + 1 + chain_id % (MAX_PORT - base_port)
    return port


class ChainServerPool:
    def __init__(self, forks: Dict[int, ForkConfig], settings: Settings, factory: SimulatorFactory = SimulatorHandle):
        self.forks = forks
        self.settings = settings
        self.factory = factory
        self.handles: Dict[int, SimulatorHandle] = {}
        self._starting: Dict[int, asyncio.Lock] = {}

    def __contains__(self, chain_id: int) -> bool:
        return chain_id in self.handles

    def get(self, chain_id: int) -> SimulatorHandle | None:
        return self.handles.get(chain_id)

    async def get_or_start(self, chain_id: int) -> SimulatorHandle:
        """Returns the handle for `chain_id`, starting its simulator on first use."""
        handle = self.handles.get(chain_id)
        if handle is not None:
            return handle

        fork = self.forks.get(chain_id)
        if fork is None:
            raise ConfigurationError(f"No fork configured for chainId({chain_id})")

        lock = self._starting.setdefault(chain_id, asyncio.Lock())
        async with lock:
            # Another caller may have finished starting it while we waited.
            handle = self.handles.get(chain_id)
            if handle is not None:
                return handle
            handle = self.factory(fork, port_for(chain_id, self.settings.BASE_PORT), self.settings)
            await handle.start()
            self.handles[chain_id] = handle
            log.info("POOL_HANDLE_ADDED", chain_id=chain_id, size=len(self.handles))
            return handle

    async def close(self):
        handles = list(self.handles.values())
        self.handles.clear()
        results = await asyncio.gather(*(handle.close() for handle in handles), return_exceptions=True)
        for handle, result in zip(handles, results):
            if isinstance(result, Exception):
                log.error("SIMULATOR_CLOSE_FAILED", chain_id=handle.chain_id, error=str(result))
