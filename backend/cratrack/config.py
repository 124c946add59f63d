from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CURRENCIES = ["EUR", "USD", "GBP", "CHF", "CAD", "JPY", "AUD", "SEK", "NOK", "DKK", "PLN"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "CRA Tracker"
    environment: str = "development"
    host: str = os.getenv("CRA_HOST", "127.0.0.1")
    port: int = int(os.getenv("CRA_PORT", "8080"))
    log_level: str = os.getenv("CRA_LOG_LEVEL", "INFO")

    database_url: Optional[str] = os.getenv("CRA_DATABASE_URL")
    sqlite_path: Path = Path(os.getenv("CRA_SQLITE_PATH", "./data/cratrack.db"))

    currencies: List[str] = Field(
        default_factory=lambda: [
            code.strip().upper() for code in os.getenv("CRA_CURRENCIES", "").split(",") if code.strip()
        ]
        or list(DEFAULT_CURRENCIES)
    )
    min_year: int = int(os.getenv("CRA_MIN_YEAR", "2000"))
    max_year: int = int(os.getenv("CRA_MAX_YEAR", "2100"))

    max_entries_per_page: int = int(os.getenv("CRA_MAX_ENTRIES_PER_PAGE", "10"))
    max_reports_per_page: int = int(os.getenv("CRA_MAX_REPORTS_PER_PAGE", "100"))

    max_report_description: int = 2000
    max_entry_description: int = 500

    @field_validator("currencies", mode="before")
    @classmethod
    def _split_currencies(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return [code.strip().upper() for code in value if code.strip()]
        if not value:
            return list(DEFAULT_CURRENCIES)
        return [code.strip().upper() for code in value.split(",") if code.strip()]

    @computed_field
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.sqlite_path}"


settings = Settings()

# Ensure the default sqlite directory exists
if not settings.database_url:
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
