# /anvil_harness/adapters/utils.py
# What a test sees: providers and wallets for the derived accounts, funding,
# mining and a reset that also clears every provider cache.
from typing import Any, Awaitable, Callable, List, Sequence, Union

from eth_account.signers.local import LocalAccount

from anvil_harness.adapters.currency import Currency, CurrencyAmount
from anvil_harness.adapters.funding import DEFAULT_DONORS, FundingEngine
from anvil_harness.adapters.provider import AccountProvider, HarnessProvider
from anvil_harness.core.harness import Harness, NetworkInfo
from anvil_harness.core.logger import get_logger

log = get_logger(__name__)

ResetFn = Callable[..., Awaitable[None]]


class HarnessUtils:
    def __init__(self, network: NetworkInfo, reset: ResetFn):
        self.network = network
        self._reset = reset
        self.providers: List[AccountProvider] = [
            AccountProvider(account, HarnessProvider(network.url)) for account in network.accounts
        ]
        self.funding = FundingEngine(self.provider)

    @classmethod
    def from_harness(cls, harness: Harness) -> "HarnessUtils":
        utils = cls(harness.network, harness.reset)
        # Resets issued through the proxy (wallet_switchEthereumChain) bypass utils.reset().
        harness.on_reset(lambda _chain_id: utils.invalidate())
        return utils

    @property
    def provider(self) -> AccountProvider:
        """The first account's provider."""
        return self.providers[0]

    @property
    def wallets(self) -> List[LocalAccount]:
        return [p.get_signer() for p in self.providers]

    @property
    def wallet(self) -> LocalAccount:
        return self.wallets[0]

    def invalidate(self):
        for provider in self.providers:
            provider.invalidate()

    async def reset(self, chain_id: int | None = None):
        await self._reset(chain_id)
        self.invalidate()

    async def send(self, method: str, params: List[Any] | None = None) -> Any:
        return await self.provider.send(method, params)

    async def mine(self, blocks: int = 1, interval: int = 1):
        """Mines `blocks` blocks, `interval` seconds apart."""
        await self.send("anvil_mine", [hex(blocks), hex(interval)])

    async def get_balance(self, address, currencies: Union[Currency, Sequence[Currency]]):
        return await self.funding.get_balance(address, currencies)

    async def fund(self, address, amounts: Union[CurrencyAmount, Sequence[CurrencyAmount]], donors: Sequence[str] = DEFAULT_DONORS):
        await self.funding.fund(address, amounts, donors)

    async def set_balance(self, address, amounts: Union[CurrencyAmount, Sequence[CurrencyAmount]], donors: Sequence[str] = DEFAULT_DONORS):
        await self.fund(address, amounts, donors)

    async def close(self):
        for p in self.providers:
            await p.provider.close()
