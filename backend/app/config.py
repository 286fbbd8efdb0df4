from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BASE_DIR / "data" / "app.db"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(default=f"sqlite:///{DEFAULT_SQLITE_PATH}")
    log_level: str = Field(default="INFO")

    # Month (1-12) in which the financial year starts; yearly periods follow it.
    financial_year_start_month: int = Field(default=4, ge=1, le=12)
    backfill_max_periods: int = Field(default=120, ge=1)

    invoice_prefix: str = Field(default="INV-")
    invoice_suffix: str = Field(default="")
    invoice_number_width: int = Field(default=6, ge=1, le=12)
    invoice_zero_pad: bool = Field(default=True)
    invoice_starting_number: int = Field(default=1, ge=1)
    invoice_due_days: int = Field(default=30, ge=0)

    default_income_account: Optional[str] = Field(default=None)
    require_income_account: bool = Field(default=False)


settings = Settings()
