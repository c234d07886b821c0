# /anvil_harness/core/config_validator.py
# Run before any simulator is started so a bad configuration fails fast.
from typing import Dict
from anvil_harness.core.config import ForkConfig, Settings
from anvil_harness.core.errors import ConfigurationError
from anvil_harness.core.logger import get_logger

log = get_logger(__name__)

# Deriving HD accounts is slow; more than this noticeably delays start-up.
ACCOUNT_COUNT_WARNING_THRESHOLD = 4


def validate(settings: Settings) -> Dict[int, ForkConfig]:
    """Checks the configuration and returns the fork map keyed by chain id."""
    log.info("CONFIG_VALIDATION_START")
    forks = settings.fork_configs()
    errors = []

    if settings.DEFAULT_CHAIN_ID not in forks:
        errors.append(
            f"A fork must be configured for the default chainId({settings.DEFAULT_CHAIN_ID}). "
            "Set JSON_RPC_PROVIDER or add an entry to FORKS."
        )
    for chain_id, fork in forks.items():
        if fork.chain_id != chain_id:
            errors.append(f"FORKS entry {chain_id} declares chain_id {fork.chain_id}")
    if settings.ACCOUNT_COUNT < 1:
        errors.append("ACCOUNT_COUNT must be at least 1")

    if errors:
        for error in errors:
            log.critical("CONFIG_INVALID", error=error)
        raise ConfigurationError("\n".join(errors))

    if settings.ACCOUNT_COUNT > ACCOUNT_COUNT_WARNING_THRESHOLD:
        log.warning(
            "ACCOUNT_COUNT_SLOWS_STARTUP",
            count=settings.ACCOUNT_COUNT,
            hint="Specifying multiple accounts will noticeably slow your test startup time.",
        )

    log.info("CONFIG_VALIDATION_PASSED", chains=sorted(forks))
    return forks
