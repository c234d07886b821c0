# /anvil_harness/core/accounts.py
from typing import List
from eth_account import Account
from pydantic import BaseModel, ConfigDict

from anvil_harness.core.logger import get_logger

log = get_logger(__name__)

Account.enable_unaudited_hdwallet_features()


class AccountRecord(BaseModel):
    """A test account the simulators pre-fund on start-up."""
    model_config = ConfigDict(frozen=True)

    address: str
    private_key: str


def derive_accounts(mnemonic: str, count: int, derivation_path: str) -> List[AccountRecord]:
    """Derives `count` accounts at `<derivation_path>/<index>`."""
    accounts = []
    for index in range(count):
        account = Account.from_mnemonic(mnemonic, account_path=f"{derivation_path}/{index}")
        accounts.append(AccountRecord(address=account.address, private_key="0x" + bytes(account.key).hex()))
    log.info("ACCOUNTS_DERIVED", count=count)
    return accounts
