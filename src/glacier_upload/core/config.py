"""Configuration for Glacier Upload."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "GLACIER_UPLOAD_"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env(name: str, fallback: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None and fallback:
        value = os.getenv(fallback)
    return value or None


class UploaderConfig(BaseModel):
    """Uploader configuration model."""

    region: Optional[str] = Field(None, description="AWS region of the vault")
    profile: Optional[str] = Field(None, description="AWS credentials profile")
    account_id: str = Field("-", description="Vault owner account ID ('-' for the caller)")
    endpoint_url: Optional[str] = Field(None, description="Override the Glacier endpoint")
    max_retries: int = Field(
        5, ge=1, le=20, description="botocore attempts per request (standard mode)"
    )
    retry_budget: int = Field(5, ge=1, le=100, description="Attempts per part")
    retry_backoff: float = Field(
        1.0, ge=0, description="Seconds before the first part retry, doubled per retry"
    )
    part_size: Optional[int] = Field(
        None, description="Part size override in bytes (power of two MiB)"
    )
    log_level: str = Field("INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level name."""
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"Log level must be one of {', '.join(LOG_LEVELS)}")
        return v

    @classmethod
    def from_env(cls, **overrides) -> "UploaderConfig":
        """Build a config from ``GLACIER_UPLOAD_*`` (and standard AWS) variables.

        Keyword overrides that are not None win over the environment.
        """
        values = {
            "region": _env("REGION", "AWS_DEFAULT_REGION"),
            "profile": _env("PROFILE", "AWS_PROFILE"),
            "account_id": _env("ACCOUNT_ID"),
            "endpoint_url": _env("ENDPOINT_URL"),
            "max_retries": _env("MAX_RETRIES"),
            "retry_budget": _env("RETRIES"),
            "retry_backoff": _env("RETRY_BACKOFF"),
            "part_size": _env("PART_SIZE"),
            "log_level": _env("LOG_LEVEL"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        config = cls(**{k: v for k, v in values.items() if v is not None})
        logger.debug(f"Loaded configuration: region={config.region}, profile={config.profile}")
        return config
