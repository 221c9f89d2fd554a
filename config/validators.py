"""Credential and configuration validators."""

from shareswap.exceptions import ConfigError


def validate_chain_config() -> None:
    """Raise ConfigError if the chain endpoint or contract addresses are missing."""
    from config.settings import settings
    if not settings.CHAIN_RPC_URL:
        raise ConfigError("CHAIN_RPC_URL is required")
    for name in ("PAIR_CONTRACT_ADDRESS", "ASSET_CONTRACT_ADDRESS", "CURRENCY_TOKEN_ADDRESS"):
        if not getattr(settings, name):
            raise ConfigError(f"{name} is required")


def validate_wallet() -> None:
    """Raise ConfigError if no local signing key is configured."""
    from config.settings import settings
    if not settings.WALLET_PRIVATE_KEY:
        raise ConfigError("WALLET_PRIVATE_KEY is required")


def validate_signing_service() -> None:
    """Raise ConfigError if the signing service URL is missing."""
    from config.settings import settings
    if not settings.SIGNING_SERVICE_URL:
        raise ConfigError("SIGNING_SERVICE_URL is required")
