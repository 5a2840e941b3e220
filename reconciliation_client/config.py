"""
Reconciliation Client - Configuration Management

Centralized configuration for the dashboard coordination layer.
This module ensures:
- No hardcoded backend URLs outside the defaults below
- API base URL always carries an API version segment
- Polling, debounce and pagination tunables come from the environment
- Environment-specific validation (dev/staging/prod)
"""

import re
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


DEFAULT_API_BASE_URL = "http://localhost:8080"
DEFAULT_API_VERSION_SEGMENT = "/api/v1"

_API_VERSION_PATTERN = re.compile(r"/api/v\d+(/|$)")


def normalize_api_base_url(base_url: str) -> str:
    """
    Normalize the configured backend base URL.

    - Empty values fall back to the local development backend
    - Trailing slashes are stripped
    - "/api/v1" is appended when no "/api/v<N>" segment is present
    """
    url = (base_url or "").strip()
    if not url:
        logger.warning(f"API_BASE_URL is not set. Using default: {DEFAULT_API_BASE_URL}")
        url = DEFAULT_API_BASE_URL

    url = url.rstrip("/")

    if not _API_VERSION_PATTERN.search(url):
        if url.endswith("/api"):
            url = url[: -len("/api")]
        url = f"{url}{DEFAULT_API_VERSION_SEGMENT}"

    return url


class Settings(BaseSettings):
    """
    Client settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== BACKEND ====================
    API_BASE_URL: str = Field(
        default=DEFAULT_API_BASE_URL,
        description="Reconciliation backend base URL (API version segment added if missing)"
    )
    REQUEST_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Transport-level timeout for a single request"
    )

    # ==================== POLLING ====================
    POLL_INTERVAL_SECONDS: float = Field(
        default=2.0,
        description="Base interval between batch status polls"
    )
    POLL_MAX_CONSECUTIVE_ERRORS: int = Field(
        default=3,
        description="Consecutive poll failures before polling is abandoned"
    )

    # ==================== SEARCH / PAGINATION ====================
    SEARCH_DEBOUNCE_SECONDS: float = Field(
        default=0.3,
        description="Quiet period before a typed invoice search is issued"
    )
    SEARCH_RESULT_LIMIT: int = Field(
        default=20,
        description="Maximum invoices returned per search"
    )
    PAGE_SIZE: int = Field(
        default=20,
        description="Transactions requested per page"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )
    LOG_JSON: bool = Field(
        default=True,
        description="Emit structured JSON logs (plain text in development)"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def api_base_url(self) -> str:
        """Backend base URL including the API version segment."""
        return normalize_api_base_url(self.API_BASE_URL)

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def log_json_enabled(self) -> bool:
        return self.LOG_JSON and not self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if self.POLL_INTERVAL_SECONDS <= 0:
            errors.append("POLL_INTERVAL_SECONDS must be positive")

        if self.POLL_MAX_CONSECUTIVE_ERRORS < 1:
            errors.append("POLL_MAX_CONSECUTIVE_ERRORS must be at least 1")

        if self.SEARCH_DEBOUNCE_SECONDS < 0:
            errors.append("SEARCH_DEBOUNCE_SECONDS cannot be negative")

        if self.is_production:
            base = self.API_BASE_URL.lower()
            if "localhost" in base or "127.0.0.1" in base:
                errors.append("API_BASE_URL cannot point to localhost in production")

            if not base.startswith("https://"):
                errors.append("API_BASE_URL must use https in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the process lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API base URL: {settings.api_base_url}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings
