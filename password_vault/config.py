"""
Store Configuration — Validated settings for the object store transport.

Reads settings from environment variables:
    VAULT_BUCKET_NAME = <bucket holding the vault object>   (required)
    VAULT_OBJECT_KEY  = <object key, default "vault.dat">
    AWS_REGION        = <region, default "us-east-1">
    VAULT_MAX_RETRIES / VAULT_RETRY_DELAY / VAULT_TIMEOUT / VAULT_CHUNK_SIZE

Security Note:
    Pre-signed URLs are credentials and are never part of the configuration.
    They are issued per request by an external service.
"""
import os
import logging

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigError

logger = logging.getLogger("password_vault")

DEFAULT_OBJECT_KEY = "vault.dat"
DEFAULT_REGION = "us-east-1"

_ENV_FIELDS = {
    "object_key": "VAULT_OBJECT_KEY",
    "region": "AWS_REGION",
    "max_retries": "VAULT_MAX_RETRIES",
    "retry_delay": "VAULT_RETRY_DELAY",
    "timeout": "VAULT_TIMEOUT",
    "chunk_size": "VAULT_CHUNK_SIZE",
}


class StoreConfig(BaseModel):
    """Validated object store configuration."""

    bucket_name: str
    object_key: str = Field(default=DEFAULT_OBJECT_KEY)
    region: str = Field(default=DEFAULT_REGION)
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay: float = Field(default=1.0, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    chunk_size: int = Field(default=64 * 1024, ge=1024)

    model_config = {"frozen": True}

    @field_validator("bucket_name", "object_key")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject empty or whitespace-only storage locations."""
        if not v or not v.strip():
            raise ValueError("storage location cannot be empty")
        return v.strip()

    @property
    def object_uri(self) -> str:
        """Storage location in ``s3://bucket/key`` form, for log context."""
        return f"s3://{self.bucket_name}/{self.object_key}"

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Create StoreConfig by loading values from environment.

        Returns:
            Populated StoreConfig instance.

        Raises:
            ConfigError: If VAULT_BUCKET_NAME is unset or a value is invalid.
        """
        bucket_name = os.environ.get("VAULT_BUCKET_NAME")
        if not bucket_name:
            raise ConfigError(
                "VAULT_BUCKET_NAME environment variable is not set"
            )
        values = {"bucket_name": bucket_name}
        for field, env_name in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is not None:
                values[field] = raw
        try:
            config = cls(**values)
        except PydanticValidationError as err:
            raise ConfigError(f"Invalid store configuration: {err}") from err
        logger.debug(
            "Loaded store config for %s (max_retries=%d, timeout=%.1fs)",
            config.object_uri, config.max_retries, config.timeout,
        )
        return config
