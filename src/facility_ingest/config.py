from __future__ import annotations

import logging
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from facility_ingest.core.acceptance import DEFAULT_DENIED_CATEGORIES

_RESERVED_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}
_configured = False


class IngestSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    STORE_BACKEND: Literal["dynamodb", "jsonl"] = "dynamodb"
    OUTPUT_FILE: str = "runtime/facilities.jsonl"
    TABLE_NAME: str = "health_facilities"
    AWS_REGION: str | None = None
    AWS_PROFILE: str | None = None
    DYNAMODB_ENDPOINT_URL: str | None = None
    READ_CAPACITY: int = Field(default=5, gt=0)
    WRITE_CAPACITY: int = Field(default=5, gt=0)
    BATCH_SIZE: int = Field(default=25, gt=0, le=25)
    INTER_BATCH_DELAY_SECONDS: float = Field(default=0.15, ge=0)
    MAX_RETRIES: int = Field(default=6, ge=0)
    RETRY_BASE_DELAY_SECONDS: float = Field(default=0.1, gt=0)
    RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0, ge=0)
    PROGRESS_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)
    PROGRESS_LOG_EVERY: int = Field(default=500, gt=0)
    DENIED_CATEGORIES: list[str] = Field(default_factory=lambda: list(DEFAULT_DENIED_CATEGORIES))
    REPORT_CONSUMED_CAPACITY: bool = False
    LOG_LEVEL: str = "INFO"
    METRICS_TEXTFILE: str | None = None

    @model_validator(mode="after")
    def _check_retry_delays(self) -> "IngestSettings":
        if self.RETRY_MAX_DELAY_SECONDS < self.RETRY_BASE_DELAY_SECONDS:
            raise ValueError("RETRY_MAX_DELAY_SECONDS must be >= RETRY_BASE_DELAY_SECONDS")
        return self


def load_settings() -> IngestSettings:
    return IngestSettings()


class _ExtraFieldsFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {key: value for key, value in vars(record).items() if key not in _RESERVED_RECORD_FIELDS}
        if not extras:
            return message
        fields = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{message} {fields}"


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(_ExtraFieldsFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())
    _configured = True
