# /anvil_harness/core/config.py
from typing import Dict
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# anvil's built-in development mnemonic. Deriving from it yields the same
# pre-funded accounts the simulator creates on start-up.
DEFAULT_MNEMONIC = "test test test test test test test test test test test junk"
DEFAULT_DERIVATION_PATH = "m/44'/60'/0'/0"


class ForkConfig(BaseModel):
    """Where and at which height a chain is forked from."""
    model_config = ConfigDict(frozen=True)

    chain_id: int
    url: str
    block_number: int | None = None
    http_headers: Dict[str, str] = Field(default_factory=dict)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Default chain, forked from JSON_RPC_PROVIDER (the equivalent of hardhat's `forking`)
    DEFAULT_CHAIN_ID: int = 1
    JSON_RPC_PROVIDER: str | None = None
    FORK_BLOCK_NUMBER: int | None = 17023328

    # Additional chains reachable through reset(chainId) / wallet_switchEthereumChain.
    # Supplied as JSON, e.g. FORKS='{"137": {"chain_id": 137, "url": "https://..."}}'
    FORKS: Dict[int, ForkConfig] = Field(default_factory=dict)

    # Client-facing endpoint
    PROXY_HOST: str = "127.0.0.1"
    PROXY_PORT: int = 8545
    PROXY_MAX_BODY_SIZE: int = 256 * 1024 * 1024  # bytes; large batches and deploy payloads

    # Simulator processes
    SIMULATOR_BINARY: str = "anvil"
    SIMULATOR_HOST: str = "127.0.0.1"
    BASE_PORT: int = 8545
    SIMULATOR_START_TIMEOUT: float = 60.0
    AUTOMINE: bool = True
    MINING_INTERVAL: int | None = None

    # Test accounts
    ACCOUNT_COUNT: int = 2
    ACCOUNT_MNEMONIC: str = DEFAULT_MNEMONIC
    DERIVATION_PATH: str = DEFAULT_DERIVATION_PATH
    ACCOUNT_BALANCE: int = 10000  # in ether

    # Operational Settings
    LOGGING_ENABLED: bool = False
    LOG_LEVEL: str = "INFO"
    SENTRY_DSN: str | None = None

    def fork_configs(self) -> Dict[int, ForkConfig]:
        """All configured forks keyed by chain id.

        An explicit FORKS entry for the default chain wins over the
        JSON_RPC_PROVIDER shorthand.
        """
        forks = dict(self.FORKS)
        if self.DEFAULT_CHAIN_ID not in forks and self.JSON_RPC_PROVIDER:
            forks[self.DEFAULT_CHAIN_ID] = ForkConfig(
                chain_id=self.DEFAULT_CHAIN_ID,
                url=self.JSON_RPC_PROVIDER,
                block_number=self.FORK_BLOCK_NUMBER,
            )
        return forks


try:
    settings = Settings()
except Exception as e:
    # Late import to avoid circular dependency only for logging the failure
    from anvil_harness.core.logger import configure_logging, get_logger
    configure_logging()
    get_logger("anvil_harness.config").critical("FAILED_TO_LOAD_SETTINGS", error=str(e))
    raise SystemExit(1)
