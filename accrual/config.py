"""
Runtime settings for the accrual ledger service.

Every setting can be overridden through an environment variable:

    ACCRUAL_HOURLY_RATE   -> hourly_rate   (cents per hour, default 2200)
    ACCRUAL_TICK_SECONDS  -> tick_seconds  (default 60)
    ACCRUAL_STORAGE_PATH  -> storage_path  (default data/ledger.json)
    ACCRUAL_HOST          -> host
    ACCRUAL_PORT          -> port
    ACCRUAL_LOG_LEVEL     -> log_level
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "ACCRUAL_"


class Settings(BaseModel):
    hourly_rate: Decimal = Field(default=Decimal("2200"), ge=0, description="Cents accrued per hour")
    tick_seconds: int = Field(default=60, gt=0)
    storage_path: Path = Path("data/ledger.json")
    host: str = "0.0.0.0"
    port: int = Field(default=8000, gt=0, lt=65536)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        environ = os.environ if environ is None else environ
        overrides = {}
        for field_name in cls.model_fields:
            value = environ.get(ENV_PREFIX + field_name.upper())
            if value is not None and value != "":
                overrides[field_name] = value
        return cls(**overrides)
