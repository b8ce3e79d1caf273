"""Tests for settings loading."""

import os
from pathlib import Path

import pytest

from defi_portfolio_tracker.config import CONFIG_ENV_VAR, Settings, load_settings
from defi_portfolio_tracker.errors import ConfigurationError


def test_defaults(monkeypatch):
    """Test defaults when no file is given."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    settings = load_settings()

    assert settings.cache.backend == "memory"
    assert settings.cache.default_ttl == 300
    assert settings.rate_limits["coingecko"] == 5
    assert settings.rate_limits["ethereum-rpc"] == 5
    assert settings.rate_limits["polygon-explorer"] == 3
    assert settings.chains.enabled == ["ethereum"]
    assert settings.aggregation.timeout == 30.0
    assert settings.aggregation.currencies == ["usd"]


def test_load_yaml(tmp_path):
    """Test values from a YAML file override defaults."""
    config = tmp_path / "settings.yaml"
    config.write_text(
        """
cache:
  backend: redis
  portfolio_ttl: 60
redis:
  url: redis://cache:6379/1
chains:
  enabled: [ethereum, polygon]
aggregation:
  timeout: 10
  currencies: [usd, eur]
rate_limits:
  coingecko: 1
"""
    )

    settings = load_settings(config)

    assert settings.cache.backend == "redis"
    assert settings.cache.portfolio_ttl == 60
    assert settings.cache.price_ttl == 120
    assert settings.redis.url == "redis://cache:6379/1"
    assert settings.chains.enabled == ["ethereum", "polygon"]
    assert settings.aggregation.currencies == ["usd", "eur"]
    assert settings.rate_limits == {"coingecko": 1}


def test_env_interpolation(tmp_path, monkeypatch):
    """Test ${VAR} and ${VAR:-default} references are resolved."""
    monkeypatch.setenv("ETHERSCAN_API_KEY", "abc123")
    monkeypatch.delenv("COINGECKO_API_KEY", raising=False)
    config = tmp_path / "settings.yaml"
    config.write_text(
        """
external_apis:
  coingecko_api_key: ${COINGECKO_API_KEY:-demo}
  explorers:
    ethereum:
      base_url: https://api.etherscan.io/api
      api_key: ${ETHERSCAN_API_KEY}
"""
    )

    settings = load_settings(config)

    assert settings.external_apis.coingecko_api_key == "demo"
    assert settings.external_apis.explorers["ethereum"].api_key == "abc123"


def test_config_path_from_environment(tmp_path, monkeypatch):
    """Test the config file can be named by environment variable."""
    config = tmp_path / "settings.yaml"
    config.write_text("cache:\n  default_ttl: 42\n")
    monkeypatch.setenv(CONFIG_ENV_VAR, str(config))

    assert load_settings().cache.default_ttl == 42


def test_missing_file(tmp_path):
    """Test an unreadable file is a configuration error."""
    with pytest.raises(ConfigurationError, match="Cannot read"):
        load_settings(tmp_path / "missing.yaml")


def test_invalid_yaml(tmp_path):
    """Test malformed YAML is a configuration error."""
    config = tmp_path / "settings.yaml"
    config.write_text("cache: [unclosed\n")

    with pytest.raises(ConfigurationError):
        load_settings(config)


def test_invalid_values(tmp_path):
    """Test values that fail validation are a configuration error."""
    config = tmp_path / "settings.yaml"
    config.write_text("cache:\n  backend: memcached\n")

    with pytest.raises(ConfigurationError, match="Invalid config"):
        load_settings(config)


def test_non_mapping(tmp_path):
    """Test a top-level list is rejected."""
    config = tmp_path / "settings.yaml"
    config.write_text("- a\n- b\n")

    with pytest.raises(ConfigurationError, match="mapping"):
        load_settings(config)


def test_empty_file(tmp_path):
    """Test an empty file yields defaults."""
    config = tmp_path / "settings.yaml"
    config.write_text("")

    assert load_settings(config) == Settings()


def test_example_config_loads(monkeypatch):
    """Test the shipped example config validates."""
    monkeypatch.delenv("CACHE_BACKEND", raising=False)
    example = Path(__file__).parent.parent / "config.example.yaml"

    settings = load_settings(example)

    assert settings.cache.backend == "memory"
    assert settings.chains.enabled == ["ethereum", "polygon", "bsc", "arbitrum"]
    assert set(settings.external_apis.explorers) == set(settings.chains.enabled)


def test_environment_overrides_file(tmp_path, monkeypatch):
    """Test DEFI_PORTFOLIO_* variables win over the YAML file."""
    monkeypatch.setenv("DEFI_PORTFOLIO_CACHE__BACKEND", "redis")
    monkeypatch.setenv("DEFI_PORTFOLIO_AGGREGATION__CURRENCIES", '["usd", "gbp"]')
    config = tmp_path / "settings.yaml"
    config.write_text("cache:\n  backend: memory\n  portfolio_ttl: 60\n")

    settings = load_settings(config, env_file=None)

    assert settings.cache.backend == "redis"
    assert settings.cache.portfolio_ttl == 60
    assert settings.aggregation.currencies == ["usd", "gbp"]


def test_dotenv_file(tmp_path, monkeypatch):
    """Test a .env file supplies settings and ${VAR} values without touching the environment."""
    monkeypatch.delenv("ETHERSCAN_API_KEY", raising=False)
    monkeypatch.delenv("DEFI_PORTFOLIO_AGGREGATION__TIMEOUT", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("ETHERSCAN_API_KEY=from-dotenv\nDEFI_PORTFOLIO_AGGREGATION__TIMEOUT=12\n")
    config = tmp_path / "settings.yaml"
    config.write_text(
        """
external_apis:
  explorers:
    ethereum:
      base_url: https://api.etherscan.io/api
      api_key: ${ETHERSCAN_API_KEY}
"""
    )

    settings = load_settings(config, env_file=env_file)

    assert settings.external_apis.explorers["ethereum"].api_key == "from-dotenv"
    assert settings.aggregation.timeout == 12
    assert "ETHERSCAN_API_KEY" not in os.environ


def test_invalid_environment_value(monkeypatch):
    """Test an environment value that fails validation is a configuration error."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setenv("DEFI_PORTFOLIO_CACHE__BACKEND", "memcached")

    with pytest.raises(ConfigurationError, match="Invalid config"):
        load_settings(env_file=None)
