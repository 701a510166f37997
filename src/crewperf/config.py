from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    DATABASE_URL: str = Field(
        "sqlite:///data/crewperf.db",
        description="SQLAlchemy URL of the reconciliation store"
    )
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    MATCH_CONFIDENCE_THRESHOLD: float = Field(
        0.80,
        description="Minimum similarity (0-1) for the matcher to propose a sheet job name"
    )
    MATCH_REVIEW_THRESHOLD: float = Field(
        0.95,
        description="Proposals at or above this score are tagged 'matched' instead of 'needs_review'"
    )
    CANONICAL_JOB_MATCH_THRESHOLD: float = Field(
        0.85,
        description="Minimum similarity to reuse an existing canonical job on commit"
    )
    JOB_NAME_SUFFIXES: List[str] = Field(
        default_factory=lambda: ["ARL", "REVISED", "SM", "CLI", "PM", "SD", "LAK", "WA", "CA", "JOB"],
        description="Trailing '- CODE' suffixes ignored when comparing job names"
    )

    OT_MULTIPLIER: float = Field(1.5, description="Weight applied to overtime hours")
    OT2_MULTIPLIER: float = Field(2.0, description="Weight applied to double-overtime hours")
    QC_FIXED_HOURS: float | None = Field(
        3.0,
        description="Hours credited per QC shift; None sums the worked hours instead"
    )
    DELIVERY_DROP_FIXED_HOURS: float | None = Field(
        3.0,
        description="Hours credited per delivery drop shift; None sums the worked hours instead"
    )

    BONUS_ELIGIBLE_THRESHOLD: float = Field(
        0.15,
        description="Actual saved fraction from which a job is bonus-eligible"
    )

    IMPORT_POLL_TIMEOUT_SECONDS: float = Field(
        60.0,
        description="Upper bound for waiting on an asynchronous job import"
    )
    IMPORT_POLL_INTERVAL_SECONDS: float = Field(
        1.0,
        description="Initial delay between import polls (doubles up to 8x)"
    )

# Singleton instance
settings = Settings()
