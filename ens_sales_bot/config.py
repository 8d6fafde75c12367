"""
Configuration management for the sales bot.

Provides a centralized, type-safe configuration system with:
- Environment variable loading
- Runtime updates via API
- Validation
- Sensitive field protection
"""

from typing import Optional, Dict, Any, List
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
import logging

logger = logging.getLogger(__name__)

ENS_BASE_REGISTRAR = "0x57f1887a8bf19b14fc0df6fd9b2acc9af147ea85"
ENS_NAME_WRAPPER = "0xd4416b13d2b3a9abae7acd5d6c2bbdbe25686401"


class BotConfig(BaseSettings):
    """
    Bot configuration loaded from environment and runtime updates.

    Sensitive fields (API keys, access tokens) are never exposed to the frontend.
    """

    # Mode
    dry_run: bool = Field(default=True, alias="DRY_RUN", description="Log tweets instead of posting")

    # Storage
    database_path: str = Field(default="ens_sales.sqlite3", alias="DATABASE_PATH")

    # Data source (sensitive key never exposed)
    moralis_api_key: str = Field(default="", alias="MORALIS_API_KEY")
    moralis_base_url: str = Field(default="https://deep-index.moralis.io/api/v2.2", alias="MORALIS_BASE_URL")
    contract_addresses: str = Field(
        default=f"{ENS_NAME_WRAPPER},{ENS_BASE_REGISTRAR}",
        alias="CONTRACT_ADDRESSES",
        description="Comma separated contract addresses",
    )
    fetch_limit: int = Field(default=10, alias="FETCH_LIMIT", ge=1, le=100)
    request_timeout: float = Field(default=30.0, alias="REQUEST_TIMEOUT", ge=1, le=120)

    # Twitter credentials (sensitive - never exposed to frontend)
    twitter_api_key: str = Field(default="", alias="TWITTER_API_KEY")
    twitter_api_secret: str = Field(default="", alias="TWITTER_API_SECRET")
    twitter_access_token: str = Field(default="", alias="TWITTER_ACCESS_TOKEN")
    twitter_access_token_secret: str = Field(default="", alias="TWITTER_ACCESS_TOKEN_SECRET")

    # Scheduling
    poll_interval_seconds: float = Field(default=300.0, alias="POLL_INTERVAL_SECONDS", ge=5, le=3600)

    # Ingestion filters
    min_price_eth: float = Field(default=0.05, alias="MIN_PRICE_ETH", ge=0)
    min_block_number: int = Field(default=23_000_000, alias="MIN_BLOCK_NUMBER", ge=0)

    # Posting
    daily_post_limit: int = Field(default=15, alias="DAILY_POST_LIMIT", ge=1, le=1000)
    twitter_enabled: bool = Field(default=True, alias="TWITTER_ENABLED")
    auto_post_enabled: bool = Field(default=False, alias="AUTO_POST_ENABLED")
    auto_post_max_age_hours: float = Field(default=1.0, alias="AUTO_POST_MAX_AGE_HOURS", gt=0, le=168)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @field_validator("contract_addresses", mode="before")
    @classmethod
    def join_addresses(cls, v):
        """Accept either a list or a comma separated string."""
        if isinstance(v, (list, tuple)):
            v = ",".join(v)
        return ",".join(a.strip().lower() for a in str(v).split(",") if a.strip())

    @property
    def contracts(self) -> List[str]:
        """Monitored contract addresses."""
        return [a for a in self.contract_addresses.split(",") if a]

    def get_public_config(self) -> Dict[str, Any]:
        """Get config without sensitive fields for API response."""
        return {
            "dry_run": self.dry_run,
            "database_path": self.database_path,
            "moralis_base_url": self.moralis_base_url,
            "contract_addresses": self.contracts,
            "fetch_limit": self.fetch_limit,
            "poll_interval_seconds": self.poll_interval_seconds,
            "min_price_eth": self.min_price_eth,
            "min_block_number": self.min_block_number,
            "daily_post_limit": self.daily_post_limit,
            "twitter_enabled": self.twitter_enabled,
            "auto_post_enabled": self.auto_post_enabled,
            "auto_post_max_age_hours": self.auto_post_max_age_hours,
            "moralis_configured": bool(self.moralis_api_key),
            "twitter_configured": self.has_twitter_credentials(),
        }

    def has_twitter_credentials(self) -> bool:
        return all([
            self.twitter_api_key,
            self.twitter_api_secret,
            self.twitter_access_token,
            self.twitter_access_token_secret,
        ])

    def update_from_dict(self, updates: Dict[str, Any]) -> "BotConfig":
        """Create new config with updates applied."""
        current = self.model_dump()
        current.update(updates)
        return BotConfig(**current)

    def is_valid_for_running(self) -> tuple[bool, Optional[str]]:
        """Check if config is valid for starting the scheduler."""
        if not self.moralis_api_key:
            return False, "No Moralis API key configured"
        if not self.contracts:
            return False, "No contract addresses configured"
        if not self.dry_run and not self.has_twitter_credentials():
            return False, "Twitter credentials incomplete"
        return True, None


class ConfigManager:
    """
    Manages configuration lifecycle.

    Holds the active config and handles updates.
    """

    def __init__(self, config: Optional[BotConfig] = None):
        self._config: Optional[BotConfig] = config

    def get(self) -> BotConfig:
        """Get the current config instance."""
        if self._config is None:
            self._config = BotConfig()
            logger.info("Configuration loaded from environment")
        return self._config

    def update(self, updates: Dict[str, Any]) -> BotConfig:
        """Update the config with new values."""
        current = self.get()
        self._config = current.update_from_dict(updates)
        logger.info(f"Configuration updated: {list(updates.keys())}")
        return self._config

    def reload(self) -> BotConfig:
        """Reload config from environment."""
        self._config = BotConfig()
        logger.info("Configuration reloaded from environment")
        return self._config


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> BotConfig:
    """Get the current config instance."""
    return get_config_manager().get()


def update_config(updates: Dict[str, Any]) -> BotConfig:
    """Update the global config."""
    return get_config_manager().update(updates)
