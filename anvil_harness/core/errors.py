# /anvil_harness/core/errors.py
# Exceptions raised by the harness. Everything derives from HarnessError so a
# test runner can catch the whole family in one place.
from typing import Any


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class ConfigurationError(HarnessError):
    """Missing or invalid fork configuration."""


class UnknownChainError(ConfigurationError):
    """A reset or switch targeted a chain id with no fork configured."""

    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"No fork configured for chainId({chain_id})")


class SimulatorStartError(HarnessError):
    """A simulator process could not be brought up."""


class ProxyForwardError(HarnessError):
    """The active simulator could not be reached while forwarding a request."""


class InsufficientDonorFundsError(HarnessError):
    """No donor could cover a requested token amount."""

    def __init__(self, amount: str, symbol: str, block_number: int):
        self.amount = amount
        self.symbol = symbol
        self.block_number = block_number
        super().__init__(
            f"Could not fund {amount} {symbol} from any donors on block {block_number}. "
            "Pass additional donor addresses that hold a sufficient balance of the token to fund()."
        )


class TransferFailedError(HarnessError):
    """A donor transfer was mined but reverted, or never produced a receipt."""


class RpcError(HarnessError):
    """A JSON-RPC error response."""

    def __init__(self, code: int | None, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(message)

    @classmethod
    def from_response(cls, error: Any) -> "RpcError":
        if isinstance(error, dict):
            return cls(error.get("code"), str(error.get("message", "")), error.get("data"))
        return cls(None, str(error))
