"""Outreach engine configuration module.

This module provides centralized configuration management for the outreach
engine, loading settings from environment variables with validation.

Configuration is loaded from:
1. .env file (if present)
2. Environment variables

All API keys and sensitive configuration should be provided via environment
variables, never hardcoded. A Config instance is created by the entry point
and handed to every component that needs it.

Usage:
    >>> from outreach_engine.config import Config
    >>> config = Config()
    >>> config.OUTREACH_BATCH_SIZE
    10
"""

import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///data/leads.db"
OPERATION_MODES = ("continuous", "duration")


class ConfigError(Exception):
    """Raised when configuration validation fails."""

    pass


class Config:
    """Application configuration class that loads settings from environment variables.

    Covers provider credentials (Google Maps, SendGrid, OpenAI, Slack, demo
    renderer), persistence locations, outreach cadence and volume limits,
    health thresholds and escalation policy.

    Attributes:
        GOOGLE_MAPS_API_KEY: Google Maps Places API key for business discovery.
        SENDGRID_API_KEY: SendGrid API key for email delivery.
        OPENAI_API_KEY: OpenAI API key for research, composition and classification.
        SLACK_BOT_TOKEN: Slack bot token for operator notifications.
        DATABASE_URL: SQLAlchemy async connection string for the lead store.
        GROWTH_STRATEGY_PATH: Location of the persisted growth strategy document.
        HEALTH_STATUS_PATH: Location of the heartbeat file read by external monitors.

    Example:
        >>> config = Config()
        >>> print(config.OPERATION_MODE)
        continuous
    """

    def __init__(self) -> None:
        """Initialize configuration by loading from environment variables."""

        # Application environment
        self.APP_ENV = self._get_optional("APP_ENV", "dev")
        self.DEBUG = self._get_bool("DEBUG")
        self.LOG_LEVEL = self._get_optional("LOG_LEVEL", "INFO")

        # Persistence
        self.DATABASE_URL = self._get_optional("DATABASE_URL", DEFAULT_DATABASE_URL)
        self.GROWTH_STRATEGY_PATH = self._get_optional(
            "GROWTH_STRATEGY_PATH", "data/growth-strategy.json"
        )
        self.HEALTH_STATUS_PATH = self._get_optional(
            "HEALTH_STATUS_PATH", "data/health-status.json"
        )

        # Operation mode
        self.OPERATION_MODE = self._get_optional("OPERATION_MODE", "continuous").lower()
        if self.OPERATION_MODE not in OPERATION_MODES:
            raise ConfigError(
                f"OPERATION_MODE must be one of {', '.join(OPERATION_MODES)}, "
                f"got {self.OPERATION_MODE!r}"
            )
        self.OPERATION_DURATION_DAYS = self._get_int("OPERATION_DURATION_DAYS", 30)
        self.SKIP_RESEARCH = self._get_bool("SKIP_RESEARCH")
        self.SKIP_TESTING = self._get_bool("SKIP_TESTING")
        self.TESTING_PHASE_HOURS = self._get_float("TESTING_PHASE_HOURS", 48.0)

        # Volume and targeting overrides
        self.DAILY_EMAIL_CAP = self._get_int("DAILY_EMAIL_CAP", 0)
        self.INDUSTRY_OVERRIDES = self._get_list("INDUSTRY_OVERRIDES")
        self.CITY_OVERRIDES = self._get_list("CITY_OVERRIDES")

        # Outreach cadence
        self.OUTREACH_BATCH_SIZE = self._get_int("OUTREACH_BATCH_SIZE", 10)
        self.OUTREACH_INTERVAL_MINUTES = self._get_int("OUTREACH_INTERVAL_MINUTES", 30)
        self.INTER_SEND_DELAY_SECONDS = self._get_float("INTER_SEND_DELAY_SECONDS", 10.0)
        self.TICK_ERROR_THRESHOLD = self._get_int("TICK_ERROR_THRESHOLD", 3)
        self.COLLABORATOR_TIMEOUT_SECONDS = self._get_float(
            "COLLABORATOR_TIMEOUT_SECONDS", 60.0
        )

        # Monitoring cadence
        self.HEALTH_CHECK_INTERVAL_MINUTES = self._get_int(
            "HEALTH_CHECK_INTERVAL_MINUTES", 10
        )
        self.HEARTBEAT_INTERVAL_SECONDS = self._get_int("HEARTBEAT_INTERVAL_SECONDS", 30)
        self.PHASE_CHECK_INTERVAL_MINUTES = self._get_int(
            "PHASE_CHECK_INTERVAL_MINUTES", 60
        )
        self.DISCOVERY_DELAY_SECONDS = self._get_float("DISCOVERY_DELAY_SECONDS", 2.0)

        # Escalation policy
        self.ESCALATION_SEVERITY_THRESHOLD = self._get_int(
            "ESCALATION_SEVERITY_THRESHOLD", 8
        )
        self.ALERT_COOLDOWN_HOURS = self._get_float("ALERT_COOLDOWN_HOURS", 24.0)
        self.EMERGENCY_CONTACT_EMAIL = self._get_optional("EMERGENCY_CONTACT_EMAIL")
        self.ALLOW_PHASE_REGRESSION = self._get_bool("ALLOW_PHASE_REGRESSION", True)

        # Google Maps Configuration
        self.GOOGLE_MAPS_API_KEY = self._get_optional("GOOGLE_MAPS_API_KEY")

        # SendGrid Configuration
        self.SENDGRID_API_KEY = self._get_optional("SENDGRID_API_KEY")
        self.SENDGRID_FROM_EMAIL = self._get_optional("SENDGRID_FROM_EMAIL")
        self.SENDGRID_FROM_NAME = self._get_optional("SENDGRID_FROM_NAME")
        self.SENDGRID_MONTHLY_LIMIT = self._get_int("SENDGRID_MONTHLY_LIMIT", 3000)

        # OpenAI Configuration
        self.OPENAI_API_KEY = self._get_optional("OPENAI_API_KEY")
        self.OPENAI_MODEL = self._get_optional("OPENAI_MODEL", "gpt-4o")

        # Slack Configuration
        self.SLACK_BOT_TOKEN = self._get_optional("SLACK_BOT_TOKEN")
        self.SLACK_CHANNEL = self._get_optional("SLACK_CHANNEL", "#outreach-alerts")

        # Demo rendering service
        self.DEMO_RENDER_URL = self._get_optional("DEMO_RENDER_URL")
        self.DEMO_RENDER_TOKEN = self._get_optional("DEMO_RENDER_TOKEN")

    def _get_optional(self, name: str, default: str = "") -> str:
        """Get an optional configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Default value if not found (default: "").

        Returns:
            The value of the environment variable or the default value.
        """
        if name in os.environ:
            return os.environ[name]
        return default

    def _get_bool(self, name: str, default: bool = False) -> bool:
        """Get a boolean configuration value from environment variables.

        Args:
            name: The name of the environment variable.
            default: Value used when the variable is unset.

        Returns:
            True if the environment variable is set to 'true', '1' or 'yes'.
        """
        if name not in os.environ:
            return default
        return os.environ[name].strip().lower() in ["true", "1", "yes"]

    def _get_int(self, name: str, default: int) -> int:
        """Get an integer configuration value.

        Raises:
            ConfigError: If the value is not a valid integer.
        """
        raw = self._get_optional(name, str(default))
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from e

    def _get_float(self, name: str, default: float) -> float:
        """Get a float configuration value.

        Raises:
            ConfigError: If the value is not a valid number.
        """
        raw = self._get_optional(name, str(default))
        try:
            return float(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be a number, got {raw!r}") from e

    def _get_list(self, name: str) -> list[str]:
        """Get a comma-separated list, dropping empty entries."""
        raw = self._get_optional(name)
        return [item.strip() for item in raw.split(",") if item.strip()]

    def validate_for_discovery(self) -> None:
        """Validate configuration required for business discovery.

        Raises:
            ConfigError: If required discovery configuration is missing.
        """
        if not self.GOOGLE_MAPS_API_KEY:
            raise ConfigError("GOOGLE_MAPS_API_KEY is required for business discovery")

    def validate_for_outreach(self) -> None:
        """Validate configuration required for composing and sending outreach.

        Raises:
            ConfigError: If required outreach configuration is missing.
        """
        if not self.OPENAI_API_KEY:
            raise ConfigError("OPENAI_API_KEY is required for outreach composition")
        if not self.SENDGRID_API_KEY:
            raise ConfigError("SENDGRID_API_KEY is required for email delivery")
        if not self.SENDGRID_FROM_EMAIL:
            raise ConfigError("SENDGRID_FROM_EMAIL is required for email delivery")
        if not self.DEMO_RENDER_URL:
            raise ConfigError("DEMO_RENDER_URL is required for demo rendering")

    def validate_for_notifications(self) -> None:
        """Validate configuration required for Slack notifications.

        Raises:
            ConfigError: If Slack credentials are missing.
        """
        if not self.SLACK_BOT_TOKEN:
            raise ConfigError("SLACK_BOT_TOKEN is required for Slack notifications")

    def validate_all(self) -> None:
        """Validate all configuration required to start the engine.

        Notifications are optional; alerts fall back to the log when Slack
        is not configured.

        Raises:
            ConfigError: If any required configuration is missing.
        """
        self.validate_for_discovery()
        self.validate_for_outreach()
        if self.OUTREACH_BATCH_SIZE <= 0:
            raise ConfigError("OUTREACH_BATCH_SIZE must be positive")
        if self.OPERATION_MODE == "duration" and self.OPERATION_DURATION_DAYS <= 0:
            raise ConfigError("OPERATION_DURATION_DAYS must be positive in duration mode")

    def credential_report(self) -> dict[str, bool]:
        """Report which credentials are configured, without their values."""
        return {
            "GOOGLE_MAPS_API_KEY": bool(self.GOOGLE_MAPS_API_KEY),
            "SENDGRID_API_KEY": bool(self.SENDGRID_API_KEY),
            "SENDGRID_FROM_EMAIL": bool(self.SENDGRID_FROM_EMAIL),
            "OPENAI_API_KEY": bool(self.OPENAI_API_KEY),
            "DEMO_RENDER_URL": bool(self.DEMO_RENDER_URL),
            "SLACK_BOT_TOKEN": bool(self.SLACK_BOT_TOKEN),
        }

    def is_production(self) -> bool:
        """Check if running in production environment.

        Returns:
            True if APP_ENV is 'prod' or 'production'.
        """
        return self.APP_ENV.lower() in ["prod", "production"]

    def get_log_level(self) -> int:
        """Get logging level as integer.

        Returns:
            Logging level constant (e.g., logging.INFO).
        """
        level_map = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return level_map.get(self.LOG_LEVEL.upper(), logging.INFO)
