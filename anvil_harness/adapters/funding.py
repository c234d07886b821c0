# /anvil_harness/adapters/funding.py
# Gives test accounts native currency and ERC20 balances on a forked chain.
import asyncio
import re
from collections import defaultdict
from typing import Any, Dict, List, Sequence, Union

from eth_abi import decode, encode
from eth_utils import to_bytes, to_checksum_address

from anvil_harness.abis.erc20 import BALANCE_OF_ARGS, BALANCE_OF_SELECTOR, TRANSFER_ARGS, TRANSFER_SELECTOR
from anvil_harness.adapters.currency import Currency, CurrencyAmount
from anvil_harness.core.decorators import poll_until
from anvil_harness.core.errors import InsufficientDonorFundsError, RpcError, TransferFailedError
from anvil_harness.core.logger import FUNDING_FAILURES, get_logger

log = get_logger(__name__)

# Large mainnet holders, tried in order.
DEFAULT_DONORS = [
    "0xf977814e90da44bfa03b6295a0616a897441acec",
    "0x28c6c06298d514db089934071355e5743bf21d60",
    "0x47ac0fb4f2d84898e4d9e7b4dab3c24507a6d503",
    "0x5754284f345afc66a98fbb0a0afe71e0f007b949",
    "0x1a9c8182c09f50c8318d769245bea52c32be35bc",
]

MAX_TOPUP_RETRIES = 1
DEFAULT_GAS_TOPUP = 10**18
RECEIPT_TIMEOUT = 30.0

# anvil: "insufficient funds for gas * price + value: have 0 want 2100000"
# hardhat: "sender doesn't have enough funds to send tx. The max upfront cost is: 2100000"
_ANVIL_INSUFFICIENT_FUNDS = re.compile(r"insufficient funds for gas \* price \+ value(?:: have \d+ want (\d+))?", re.IGNORECASE)
_HARDHAT_INSUFFICIENT_FUNDS = re.compile(r"max upfront cost is: (\d*)", re.IGNORECASE)

AddressLike = Union[str, Any]


def _address_of(address: AddressLike) -> str:
    return address if isinstance(address, str) else address.address


def required_gas_funds(message: str) -> int | None:
    """Native balance a donor needs, parsed from an insufficient-funds error.

    Returns None when `message` is not an insufficient-funds-for-gas error.
    """
    for pattern in (_ANVIL_INSUFFICIENT_FUNDS, _HARDHAT_INSUFFICIENT_FUNDS):
        match = pattern.search(message)
        if match:
            return int(match.group(1)) if match.group(1) else DEFAULT_GAS_TOPUP
    return None


class _ReceiptPending(Exception):
    pass


class FundingEngine:
    def __init__(self, provider):
        self.provider = provider
        self._donor_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _send(self, method: str, params: List[Any]) -> Any:
        return await self.provider.send(method, params)

    async def get_balance(self, address: AddressLike, currencies: Union[Currency, Sequence[Currency]]):
        """One CurrencyAmount for a single currency, a list for a list."""
        if isinstance(currencies, (list, tuple)):
            return list(await asyncio.gather(*(self.get_balance(address, c) for c in currencies)))
        address, currency = _address_of(address), currencies
        if currency.is_native:
            raw = int(await self._send("eth_getBalance", [address, "latest"]), 16)
        else:
            data = "0x" + (BALANCE_OF_SELECTOR + encode(BALANCE_OF_ARGS, [to_checksum_address(address)])).hex()
            result = await self._send("eth_call", [{"to": currency.address, "data": data}, "latest"])
            raw = decode(["uint256"], to_bytes(hexstr=result))[0]
        return CurrencyAmount.from_raw(currency, raw)

    async def fund(self, address: AddressLike, amounts: Union[CurrencyAmount, Sequence[CurrencyAmount]], donors: Sequence[str] = DEFAULT_DONORS):
        """Funds `address` with every amount, concurrently across currencies.

        Native amounts set the balance outright. Token amounts are transferred
        from the first donor that can cover them; if none can,
        InsufficientDonorFundsError is raised.
        """
        if isinstance(amounts, CurrencyAmount):
            amounts = [amounts]
        address = _address_of(address)
        await asyncio.gather(*(self._fund_one(address, amount, donors) for amount in amounts))

    set_balance = fund

    async def _fund_one(self, address: str, amount: CurrencyAmount, donors: Sequence[str]):
        if amount.currency.is_native:
            await self._send("anvil_setBalance", [address, hex(amount.raw)])
            log.info("NATIVE_BALANCE_SET", address=address, amount=amount.to_exact())
            return

        for donor in donors:
            if await self._transfer_from(donor, address, amount):
                log.info("TOKEN_FUNDED", address=address, amount=str(amount), donor=donor)
                return

        block_number = int(await self._send("eth_blockNumber", []), 16)
        symbol = amount.currency.symbol or amount.currency.address
        FUNDING_FAILURES.labels(symbol).inc()
        log.error("FUNDING_EXHAUSTED_DONORS", address=address, amount=str(amount), block_number=block_number)
        raise InsufficientDonorFundsError(amount.to_exact(), symbol, block_number)

    async def _transfer_from(self, donor: str, to: str, amount: CurrencyAmount) -> bool:
        async with self._donor_locks[donor.lower()]:
            await self._send("anvil_impersonateAccount", [donor])
            try:
                for attempt in range(MAX_TOPUP_RETRIES + 1):
                    try:
                        await self._transfer(donor, to, amount)
                        return True
                    except RpcError as e:
                        required = required_gas_funds(e.message)
                        if required is None or attempt == MAX_TOPUP_RETRIES:
                            log.debug("DONOR_TRANSFER_FAILED", donor=donor, error=e.message)
                            return False
                        log.info("DONOR_GAS_TOPUP", donor=donor, amount=required)
                        await self._send("anvil_setBalance", [donor, hex(required)])
                    except TransferFailedError as e:
                        log.debug("DONOR_TRANSFER_FAILED", donor=donor, error=str(e))
                        return False
                return False
            finally:
                await self._send("anvil_stopImpersonatingAccount", [donor])

    async def _transfer(self, donor: str, to: str, amount: CurrencyAmount):
        data = "0x" + (TRANSFER_SELECTOR + encode(TRANSFER_ARGS, [to_checksum_address(to), amount.raw])).hex()
        tx_hash = await self._send("eth_sendTransaction", [{"from": donor, "to": amount.currency.address, "data": data}])
        receipt = await self._wait_for_receipt(tx_hash)
        if int(receipt.get("status", "0x0"), 16) != 1:
            raise TransferFailedError(f"Transfer {tx_hash} from {donor} reverted")

    async def _wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        try:
            async for attempt in poll_until(RECEIPT_TIMEOUT, retry_on=_ReceiptPending):
                with attempt:
                    receipt = await self._send("eth_getTransactionReceipt", [tx_hash])
                    if receipt is None:
                        raise _ReceiptPending(tx_hash)
        except _ReceiptPending:
            raise TransferFailedError(f"No receipt for {tx_hash} after {RECEIPT_TIMEOUT}s") from None
        return receipt
