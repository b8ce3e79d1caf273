"""Settings loader: YAML file layered under a .env file and DEFI_PORTFOLIO_* environment variables."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict, SettingsError

from defi_portfolio_tracker.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DEFI_PORTFOLIO_CONFIG"
ENV_PREFIX = "DEFI_PORTFOLIO_"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class CacheSettings(BaseModel):
    """TTLs are in seconds."""

    backend: Literal["memory", "redis"] = "memory"
    default_ttl: float = 300
    price_ttl: float = 120
    coin_list_ttl: float = 24 * 3600
    portfolio_ttl: float = 300


class RedisSettings(BaseModel):
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "defi-portfolio:"
    socket_timeout: float = 2.0


class ExplorerSettings(BaseModel):
    base_url: str
    api_key: str = ""


class ExternalApiSettings(BaseModel):
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""
    http_timeout: float = 30.0
    explorers: dict[str, ExplorerSettings] = Field(
        default_factory=lambda: {
            "ethereum": ExplorerSettings(base_url="https://api.etherscan.io/api"),
            "polygon": ExplorerSettings(base_url="https://api.polygonscan.com/api"),
            "bsc": ExplorerSettings(base_url="https://api.bscscan.com/api"),
            "arbitrum": ExplorerSettings(base_url="https://api.arbiscan.io/api"),
        }
    )


class ChainSettings(BaseModel):
    """
    Chains to serve and how to reach their RPC.

    ``networks`` maps a chain id to an ape network choice
    (``ecosystem:network[:provider]``).

    """

    enabled: list[str] = Field(default_factory=lambda: ["ethereum"])
    networks: dict[str, str] = Field(
        default_factory=lambda: {
            "ethereum": "ethereum:mainnet",
            "polygon": "polygon:mainnet",
            "bsc": "bsc:mainnet",
            "arbitrum": "arbitrum:mainnet",
        }
    )


class AggregationSettings(BaseModel):
    timeout: float = 30.0
    max_workers: int = 8
    currencies: list[str] = Field(default_factory=lambda: ["usd"])


def _default_rate_limits() -> dict[str, float]:
    limits: dict[str, float] = {"coingecko": 5}
    for chain in ("ethereum", "polygon", "bsc", "arbitrum"):
        limits[f"{chain}-rpc"] = 5
        limits[f"{chain}-explorer"] = 3
    return limits


class Settings(BaseSettings):
    """
    Complete runtime configuration.

    Values are layered, highest first: ``DEFI_PORTFOLIO_*`` environment
    variables (nested with ``__``, e.g. ``DEFI_PORTFOLIO_CACHE__BACKEND``),
    the same variables in a ``.env`` file, the YAML file, then defaults.

    Attributes
    ----------
    cache : CacheSettings
        Backend selection and TTLs
    redis : RedisSettings
        Redis connection, used when ``cache.backend`` is 'redis'
    rate_limits : dict[str, float]
        Max requests per second per rate-limited resource
    external_apis : ExternalApiSettings
        Price oracle and explorer endpoints
    chains : ChainSettings
        Enabled chains and their RPC networks
    aggregation : AggregationSettings
        Fan-out deadline, pool size, and cached currencies

    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    cache: CacheSettings = Field(default_factory=CacheSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rate_limits: dict[str, float] = Field(default_factory=_default_rate_limits)
    external_apis: ExternalApiSettings = Field(default_factory=ExternalApiSettings)
    chains: ChainSettings = Field(default_factory=ChainSettings)
    aggregation: AggregationSettings = Field(default_factory=AggregationSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs and rank below the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def _interpolate(value: Any, environ: dict[str, str]) -> Any:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in every string of a YAML tree."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: _interpolate(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate(v, environ) for v in value]
    return value


def _build(env_file: str | Path | None, source: str, **values: Any) -> Settings:
    try:
        return Settings(_env_file=env_file, **values)
    except (ValidationError, SettingsError) as e:
        msg = f"Invalid config from {source}: {e}"
        raise ConfigurationError(msg) from e


def load_settings(path: str | Path | None = None, env_file: str | Path | None = ".env") -> Settings:
    """
    Load settings from a YAML file, a ``.env`` file, and the environment.

    ``${VAR}`` references in the YAML are resolved against the process
    environment first, then ``env_file``.

    Parameters
    ----------
    path : str | Path | None
        Config file. Falls back to ``$DEFI_PORTFOLIO_CONFIG``, then to defaults.
    env_file : str | Path | None
        Dotenv file; a missing file is skipped, None disables it

    Returns
    -------
    Settings
        Validated settings

    Raises
    ------
    ConfigurationError
        If the file cannot be read or does not validate

    """
    environ: dict[str, str] = {}
    if env_file is not None:
        environ.update((k, v) for k, v in dotenv_values(env_file).items() if v is not None)
    environ.update(os.environ)

    path = path or environ.get(CONFIG_ENV_VAR)
    if not path:
        logger.debug("No config file given, using defaults and environment")
        return _build(env_file, "environment")

    config_path = Path(path)
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        msg = f"Cannot read config file {config_path}: {e}"
        raise ConfigurationError(msg) from e

    if not isinstance(raw, dict):
        msg = f"Config file {config_path} must contain a mapping"
        raise ConfigurationError(msg)

    settings = _build(env_file, f"config file {config_path}", **_interpolate(raw, environ))
    logger.info("Loaded settings from %s", config_path)
    return settings
