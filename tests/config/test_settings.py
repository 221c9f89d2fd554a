import pytest
from config.settings import Settings
from config import validators
from shareswap.exceptions import ConfigError


def test_settings_has_chain_config():
    s = Settings()
    assert hasattr(s, "CHAIN_RPC_URL")
    assert hasattr(s, "CHAIN_ID")
    assert s.CURRENCY_DECIMALS == 6
    assert s.ASSET_DECIMALS == 18


def test_settings_has_trade_guards():
    s = Settings()
    assert s.MIN_SLIPPAGE_BPS <= s.DEFAULT_SLIPPAGE_BPS <= s.MAX_SLIPPAGE_BPS
    assert s.HIGH_IMPACT_BPS == 500
    assert s.TRADE_DEADLINE_SECONDS <= s.MAX_DEADLINE_SECONDS


def test_settings_has_cache_ttls():
    s = Settings()
    assert s.RESERVES_CACHE_TTL_SECONDS > 0
    assert s.NONCE_CACHE_TTL_SECONDS > 0


def test_settings_env_override(monkeypatch):
    monkeypatch.setenv("HIGH_IMPACT_BPS", "250")
    monkeypatch.setenv("SIGNING_SERVICE_URL", "https://signer.example")
    s = Settings()
    assert s.HIGH_IMPACT_BPS == 250
    assert s.SIGNING_SERVICE_URL == "https://signer.example"


def test_validate_wallet_requires_key(monkeypatch):
    monkeypatch.setattr("config.settings.settings.WALLET_PRIVATE_KEY", "")
    with pytest.raises(ConfigError):
        validators.validate_wallet()


def test_validate_chain_config_requires_addresses(monkeypatch):
    monkeypatch.setattr("config.settings.settings.PAIR_CONTRACT_ADDRESS", "")
    with pytest.raises(ConfigError):
        validators.validate_chain_config()


def test_validate_chain_config_passes_with_defaults():
    validators.validate_chain_config()
