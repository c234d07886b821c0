# /anvil_harness/adapters/provider.py
# Client-side JSON-RPC access to the harness, with caches that can be
# invalidated after a reset so "rewound" chain state becomes visible.
from typing import Any, List

import aiohttp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from pydantic import BaseModel, ConfigDict
from web3 import AsyncHTTPProvider

from anvil_harness.core.accounts import AccountRecord
from anvil_harness.core.errors import RpcError
from anvil_harness.core.logger import get_logger

log = get_logger(__name__)

CHAIN_NAMES = {1: "mainnet", 10: "optimism", 56: "bnb", 137: "matic", 8453: "base", 42161: "arbitrum"}


class ChainNetwork(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: int
    name: str


class HarnessProvider:
    """Read-consistency cache over a JSON-RPC client.

    The network is resolved once and the largest block number seen is used as
    a floor for later reads, which saves round trips and hides lagging nodes.
    Both assumptions break when the harness resets or switches chains, so
    `invalidate()` must be called after every reset before reading chain state.
    """

    def __init__(self, url: str, client=None):
        self.url = url
        self.client = client or AsyncHTTPProvider(url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=30)})
        self._cached_network: ChainNetwork | None = None
        self._last_block_number = -1

    def invalidate(self):
        """Forgets the cached network and block number floor."""
        self._cached_network = None
        self._last_block_number = -1
        log.debug("PROVIDER_CACHE_INVALIDATED", url=self.url)

    reset = invalidate

    async def request(self, method: str, params: List[Any] | None = None) -> Any:
        """Sends `method` straight to the client, bypassing every cache."""
        response = await self.client.make_request(method, params or [])
        if response.get("error") is not None:
            raise RpcError.from_response(response["error"])
        return response.get("result")

    async def get_network(self) -> ChainNetwork:
        if self._cached_network is None:
            chain_id = int(await self.request("eth_chainId"), 16)
            self._cached_network = ChainNetwork(chain_id=chain_id, name=CHAIN_NAMES.get(chain_id, "unknown"))
        return self._cached_network

    async def get_block_number(self) -> int:
        block_number = int(await self.request("eth_blockNumber"), 16)
        if block_number < self._last_block_number:
            log.debug("STALE_BLOCK_NUMBER_IGNORED", observed=block_number, cached=self._last_block_number)
            return self._last_block_number
        self._last_block_number = block_number
        return block_number

    async def send(self, method: str, params: List[Any] | None = None) -> Any:
        if method == "eth_chainId":
            return hex((await self.get_network()).chain_id)
        if method == "eth_blockNumber":
            return hex(await self.get_block_number())
        return await self.request(method, params)

    async def close(self):
        await self.client.disconnect()


class AccountProvider:
    """One test account bound to its own provider."""

    def __init__(self, account: AccountRecord, provider: HarnessProvider):
        self.account = account
        self.provider = provider
        self._signer: LocalAccount | None = None

    async def list_accounts(self) -> List[str]:
        return [self.account.address]

    def get_signer(self) -> LocalAccount:
        if self._signer is None:
            self._signer = Account.from_key(self.account.private_key)
        return self._signer

    async def send(self, method: str, params: List[Any] | None = None) -> Any:
        return await self.provider.send(method, params)

    def invalidate(self):
        self.provider.invalidate()
