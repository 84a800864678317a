"""
Application Configuration

Environment-driven settings for tenancy resolution, persistence and the
job queue. Billing provider settings live in billing.stripe_config.
"""

import os
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class AppEnvironment(str, Enum):
    """Deployment environment"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class AppConfig:
    """Application settings"""
    environment: AppEnvironment
    app_url: str
    app_key: str
    database_url: str
    redis_url: str
    db_echo: bool = False

    def __post_init__(self):
        """Validate configuration after initialization"""
        if self.environment == AppEnvironment.PRODUCTION and not self.app_key:
            raise ValueError("Production environment requires APP_KEY")
        if not self.app_key:
            logger.warning("APP_KEY is not set; signed tenant headers will never validate")

    @property
    def base_domain(self) -> Optional[str]:
        """Host part of APP_URL, the domain tenant subdomains hang off."""
        host = urlparse(self.app_url).hostname
        return host.lower() if host else None

    @property
    def url_scheme(self) -> str:
        return urlparse(self.app_url).scheme or "https"

    @property
    def url_port(self) -> Optional[int]:
        return urlparse(self.app_url).port


class AppConfigManager:
    """Loads and caches the application configuration"""

    def __init__(self):
        self._config = None

    def get_config(self) -> AppConfig:
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def reset(self) -> None:
        """Drop the cached configuration so the next access reloads it."""
        self._config = None

    def _load_config(self) -> AppConfig:
        env = os.getenv("APP_ENVIRONMENT", "development").lower()
        try:
            environment = AppEnvironment(env)
        except ValueError:
            environment = AppEnvironment.DEVELOPMENT

        config = AppConfig(
            environment=environment,
            app_url=os.getenv("APP_URL", "http://localhost"),
            app_key=os.getenv("APP_KEY", ""),
            database_url=os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./platform.db"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            db_echo=os.getenv("DB_ECHO", "false").lower() == "true",
        )

        logger.info(f"Loaded application configuration for {environment.value} environment")
        return config


# Global config manager instance
app_config_manager = AppConfigManager()


def get_app_config() -> AppConfig:
    """Get current application configuration"""
    return app_config_manager.get_config()
