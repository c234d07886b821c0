# /anvil_harness/core/harness.py
# Entry points for the surrounding test runner: setup(), reset(), close().
import asyncio
from typing import List

from pydantic import BaseModel, ConfigDict

from anvil_harness.core import config_validator
from anvil_harness.core.accounts import AccountRecord, derive_accounts
from anvil_harness.core.config import Settings, settings as default_settings
from anvil_harness.core.coordinator import ResetListener, SwitchCoordinator
from anvil_harness.core.logger import configure_logging, get_logger
from anvil_harness.core.pool import ChainServerPool, SimulatorFactory
from anvil_harness.core.proxy import ForwardingProxy
from anvil_harness.core.simulator import SimulatorHandle

log = get_logger(__name__)


class NetworkInfo(BaseModel):
    """What a test needs to connect: the fixed url and the funded accounts."""
    model_config = ConfigDict(frozen=True)

    url: str
    chain_id: int
    accounts: List[AccountRecord]


class Harness:
    """Owns the simulator pool, the coordinator and the forwarding proxy for one run."""

    def __init__(self, settings: Settings, forks, simulator_factory: SimulatorFactory = SimulatorHandle):
        self.settings = settings
        self.pool = ChainServerPool(forks, settings, simulator_factory)
        self.coordinator = SwitchCoordinator(self.pool, forks, settings.DEFAULT_CHAIN_ID)
        self.proxy = ForwardingProxy(
            self.coordinator, settings.PROXY_HOST, settings.PROXY_PORT, max_body_size=settings.PROXY_MAX_BODY_SIZE
        )
        self.accounts: List[AccountRecord] = []
        self._closed = False

    @property
    def url(self) -> str:
        return self.proxy.url

    @property
    def chain_id(self) -> int:
        return self.coordinator.active

    @property
    def network(self) -> NetworkInfo:
        return NetworkInfo(url=self.url, chain_id=self.chain_id, accounts=self.accounts)

    def on_reset(self, listener: ResetListener):
        self.coordinator.subscribe(listener)

    async def start(self):
        s = self.settings
        # Deriving accounts is CPU-bound, so it runs while the first simulator boots.
        accounts_task = asyncio.to_thread(derive_accounts, s.ACCOUNT_MNEMONIC, s.ACCOUNT_COUNT, s.DERIVATION_PATH)
        try:
            self.accounts, _ = await asyncio.gather(accounts_task, self.coordinator.reset())
            if s.LOGGING_ENABLED:
                await self.coordinator.active_handle().request("anvil_setLoggingEnabled", [True])
            await self.proxy.start()
        except BaseException:
            await self.close()
            raise
        log.info("HARNESS_READY", url=self.url, chain_id=self.chain_id, accounts=len(self.accounts))

    async def reset(self, chain_id: int | None = None):
        """Resets the active fork, or switches to `chain_id`. Call before every test."""
        await self.coordinator.reset(chain_id)

    async def close(self):
        if self._closed:
            return
        self._closed = True
        await asyncio.gather(self.proxy.close(), self.pool.close())
        log.info("HARNESS_CLOSED")


async def setup(settings: Settings | None = None, simulator_factory: SimulatorFactory = SimulatorHandle) -> Harness:
    """Validates the configuration, starts the default fork and the proxy."""
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL, settings.SENTRY_DSN)
    forks = config_validator.validate(settings)
    harness = Harness(settings, forks, simulator_factory)
    await harness.start()
    return harness
