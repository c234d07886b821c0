"""Forked-chain test harness: anvil simulators per chain behind one fixed JSON-RPC url."""

from anvil_harness.core.harness import Harness, NetworkInfo, setup
from anvil_harness.core.errors import HarnessError
from anvil_harness.adapters.currency import ETH, CurrencyAmount, NativeCurrency, Token
from anvil_harness.adapters.utils import HarnessUtils

__all__ = ["Harness", "NetworkInfo", "setup", "HarnessError", "ETH", "CurrencyAmount", "NativeCurrency", "Token", "HarnessUtils"]
