# /anvil_harness/core/coordinator.py
# Decides, for each reset, between re-forking the active simulator in place
# and retargeting the proxy at another chain's simulator.
import asyncio
import enum
from typing import Callable, Dict, List

from anvil_harness.core.config import ForkConfig
from anvil_harness.core.errors import ProxyForwardError, UnknownChainError
from anvil_harness.core.logger import CHAIN_RESETS, get_logger
from anvil_harness.core.pool import ChainServerPool
from anvil_harness.core.simulator import SimulatorHandle

log = get_logger(__name__)

ResetListener = Callable[[int], None]


class CoordinatorState(enum.Enum):
    IDLE = "idle"
    SWITCHING = "switching"


class SwitchCoordinator:
    """Owns the active target and every mutation of the pool."""

    def __init__(self, pool: ChainServerPool, forks: Dict[int, ForkConfig], default_chain_id: int):
        self.pool = pool
        self.forks = forks
        self.default_chain_id = default_chain_id
        self.active: int | None = None
        self.state = CoordinatorState.IDLE
        self._lock = asyncio.Lock()
        self._listeners: List[ResetListener] = []

    def subscribe(self, listener: ResetListener):
        """Registers `listener(chain_id)` to run after every successful reset."""
        self._listeners.append(listener)

    def active_handle(self) -> SimulatorHandle:
        handle = self.pool.get(self.active) if self.active is not None else None
        if handle is None:
            raise ProxyForwardError("No active simulator")
        return handle

    async def reset(self, chain_id: int | None = None):
        target = self.default_chain_id if chain_id is None else chain_id
        if target not in self.forks:
            log.error("RESET_UNKNOWN_CHAIN", chain_id=target, active=self.active)
            raise UnknownChainError(target)

        async with self._lock:
            self.state = CoordinatorState.SWITCHING
            try:
                if target == self.active and target in self.pool:
                    await self.pool.get(target).reset()
                    kind = "in_place"
                else:
                    # Only flip the target once the simulator is fully up.
                    await self.pool.get_or_start(target)
                    previous, self.active = self.active, target
                    kind = "switch"
                    log.info("ACTIVE_TARGET_SWITCHED", previous=previous, chain_id=target)
            finally:
                self.state = CoordinatorState.IDLE

        CHAIN_RESETS.labels(kind).inc()
        log.info("RESET_COMPLETE", chain_id=target, kind=kind)
        for listener in self._listeners:
            listener(target)
