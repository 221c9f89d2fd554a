"""Configuration template - copy to settings.py and fill in values."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # === Chain ===
    CHAIN_RPC_URL: str = ""
    CHAIN_ID: int = 10143
    RPC_RETRY_ATTEMPTS: int = 3
    RPC_RETRY_BASE_DELAY: float = 1.0

    # === Contracts ===
    PAIR_CONTRACT_ADDRESS: str = ""
    ASSET_CONTRACT_ADDRESS: str = ""
    CURRENCY_TOKEN_ADDRESS: str = ""
    CURRENCY_DECIMALS: int = 6
    ASSET_DECIMALS: int = 18

    # === EIP-712 domains ===
    PAIR_DOMAIN_NAME: str = ""
    ASSET_DOMAIN_NAME: str = ""
    DOMAIN_VERSION: str = "1"

    # === Signing service ===
    SIGNING_SERVICE_URL: str = ""
    SIGNING_SERVICE_TIMEOUT_SECONDS: float = 15.0
    SIGNING_SERVICE_TOKEN: str = ""

    # === Wallet ===
    WALLET_PRIVATE_KEY: str = ""
    WALLET_EMBEDDED: bool = True

    # === Trade guards ===
    DEFAULT_SLIPPAGE_BPS: int = 50
    MIN_SLIPPAGE_BPS: int = 1
    MAX_SLIPPAGE_BPS: int = 5000
    HIGH_IMPACT_BPS: int = 500
    TRADE_DEADLINE_SECONDS: int = 300
    MAX_DEADLINE_SECONDS: int = 1800

    # === Execution ===
    APPROVAL_TIMEOUT_SECONDS: float = 90.0
    CONFIRMATION_TIMEOUT_SECONDS: float = 120.0
    RECEIPT_POLL_INTERVAL_SECONDS: float = 1.5
    MAX_SUBMISSION_RETRIES: int = 0

    # === Read-through cache ===
    RESERVES_CACHE_TTL_SECONDS: float = 10.0
    NONCE_CACHE_TTL_SECONDS: float = 30.0

    # === Reconciliation ===
    RECONCILE_INTERVAL_SECONDS: float = 300.0

    # === Database ===
    DATABASE_URL: str = "sqlite+aiosqlite:///data/shareswap.db"

    model_config = {"env_file": ".env"}


settings = Settings()
