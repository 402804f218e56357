"""Configuration management for GroupLedger."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import SettlementMethod


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GROUP_LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database path
    database_path: Path = Path.home() / ".group_ledger" / "group_ledger.db"

    # Defaults for new groups and settlements
    default_currency: str = Field(default="USD", pattern=r"^[A-Z]{3}$")
    default_settlement_method: SettlementMethod = SettlementMethod.MARK_ONLY

    # Logging
    log_level: str = "INFO"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings(**overrides) -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings(**overrides)
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your GROUP_LEDGER_* environment "
            f"variables or .env file.\n"
            f"Error: {e}"
        ) from e
