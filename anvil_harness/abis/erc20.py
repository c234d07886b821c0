# /anvil_harness/abis/erc20.py
# The slice of ERC20 the funding engine calls, as raw selectors plus argument types.
from eth_utils import function_signature_to_4byte_selector

BALANCE_OF_SIGNATURE = "balanceOf(address)"
TRANSFER_SIGNATURE = "transfer(address,uint256)"

BALANCE_OF_SELECTOR = function_signature_to_4byte_selector(BALANCE_OF_SIGNATURE)
TRANSFER_SELECTOR = function_signature_to_4byte_selector(TRANSFER_SIGNATURE)

BALANCE_OF_ARGS = ["address"]
TRANSFER_ARGS = ["address", "uint256"]
