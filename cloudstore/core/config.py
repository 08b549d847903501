"""Application configuration using Pydantic Settings."""

import os
import re
import tempfile
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Storage client settings with environment variable support."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Service Identity
    SERVICE_NAME: str = "cloudstore"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Logging Configuration
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = True    # JSON logs (prod) vs pretty console (dev)
    DEBUG: bool = False

    # Backend Selection
    STORAGE_BACKEND: str = "localfs"  # Any name known to the backend registry
    BUCKET: str = "cloudstore"

    # Local filesystem backend root, and local cache root for open objects
    LOCALFS_PATH: str = os.path.join(os.getcwd(), "storage")
    CACHE_PATH: str = os.path.join(tempfile.gettempdir(), "cloudstore-cache")

    # Listing
    PAGE_SIZE: int = 3000

    # Retry policy for object fetch/upload and page iteration
    RETRY_MAX_ATTEMPTS: int = 10
    RETRY_MAX_BACKOFF: float = 16.0
    ITERATOR_RETRIES: int = 5

    # Streaming writer buffer (bytes)
    WRITER_BUFFER_SIZE: int = 64 * 1024

    # S3 Storage Configuration
    AWS_REGION: str = "us-east-1"
    AWS_ENDPOINT_URL: Optional[str] = None  # For MinIO or S3-compatible services

    @field_validator('PAGE_SIZE', 'RETRY_MAX_ATTEMPTS', 'ITERATOR_RETRIES', 'WRITER_BUFFER_SIZE')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Counts and sizes must be at least one."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v

    @field_validator('RETRY_MAX_BACKOFF')
    @classmethod
    def validate_backoff(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"RETRY_MAX_BACKOFF cannot be negative, got {v}")
        return v

    @field_validator('AWS_ENDPOINT_URL')
    @classmethod
    def validate_endpoint_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate AWS endpoint URL format if provided."""
        if v is None or v == "":
            return None

        if not re.match(r'^https?://.+', v):
            raise ValueError(
                f"AWS_ENDPOINT_URL must start with http:// or https://, got '{v}'"
            )

        return v

    @model_validator(mode='after')
    def validate_backend_configuration(self):
        """Cross-field checks for the selected backend."""
        if self.STORAGE_BACKEND == "s3":
            validate_s3_bucket_name(self.BUCKET)
            if not self.AWS_REGION:
                raise ValueError("AWS_REGION must be set when STORAGE_BACKEND=s3")

        if self.STORAGE_BACKEND == "localfs":
            if not self.LOCALFS_PATH:
                raise ValueError("LOCALFS_PATH must be set when STORAGE_BACKEND=localfs")
            if os.path.abspath(self.LOCALFS_PATH) == os.path.abspath(self.CACHE_PATH):
                raise ValueError(
                    f"LOCALFS_PATH={self.LOCALFS_PATH!r} cannot be the same as "
                    f"CACHE_PATH={self.CACHE_PATH!r}"
                )
        return self

    @property
    def is_debug_mode(self) -> bool:
        """Check if debug mode is on."""
        return self.DEBUG or self.LOG_LEVEL.upper() == "DEBUG"

    @property
    def use_json_logs(self) -> bool:
        """Determine if JSON logging should be used.

        In production, always use JSON logs.
        In development, allow override via LOG_JSON setting.
        """
        if self.ENVIRONMENT == "production":
            return True
        if self.DEBUG:
            return self.LOG_JSON
        return True


def validate_s3_bucket_name(v: str) -> str:
    """Validate S3 bucket name follows AWS naming conventions.

    Rules:
    - 3-63 characters long
    - Lowercase letters, numbers, hyphens, and dots only
    - Must start and end with a letter or number
    - No consecutive dots
    - Not formatted as an IP address
    """
    if not 3 <= len(v) <= 63:
        raise ValueError(f"S3 bucket name must be 3-63 characters long, got {len(v)}")

    if not re.match(r'^[a-z0-9][a-z0-9.-]*[a-z0-9]$', v):
        raise ValueError(
            f"S3 bucket name '{v}' must start/end with letter or number, "
            "and contain only lowercase letters, numbers, hyphens, and dots"
        )

    if '..' in v:
        raise ValueError("S3 bucket name cannot contain consecutive dots")

    if re.match(r'^\d+\.\d+\.\d+\.\d+$', v):
        raise ValueError("S3 bucket name cannot be formatted as an IP address")

    return v


# Global settings instance
settings = Settings()
