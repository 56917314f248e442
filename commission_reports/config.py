from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from commission_reports.models import normalize_role_table

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Commission Reports"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:8080"]

    # Storage
    DATA_DIR: Path = BASE_DIR / "data"
    DB_PATH: Path = BASE_DIR / "data/commissions.db"
    SEED_ON_STARTUP: bool = True

    # Commission rules
    BAND_SCOPE: Literal["payment", "advisor_month", "advisor_ytd"] = "advisor_ytd"
    # Ordered: the first role absorbs rounding remainders
    ROLE_TABLE: dict[str, Decimal] = {
        "Advisor": Decimal("0.60"),
        "Introducer": Decimal("0.10"),
        "Manager": Decimal("0.20"),
        "ExecutiveSalesManager": Decimal("0.10"),
    }

    # Reporting limits
    MAX_REPORT_ROWS: int = 10_000
    DEFAULT_PAGE_SIZE: int = 12
    MAX_PAGE_SIZE: int = 500

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    @field_validator("ROLE_TABLE")
    @classmethod
    def _check_role_table(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        return normalize_role_table(value)


settings = Settings()
