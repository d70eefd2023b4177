"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables (or a .env file)
with sensible defaults. Values are validated at startup, so a typo in
a numeric field fails fast instead of surfacing mid-transfer.

Mock mode swaps the S3 backend for an in-memory one, enabling local
development without a bucket or credentials.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Storage settings loaded from environment variables.

    Every field can be overridden via its upper-case env name,
    e.g. ``S3_BUCKET=build-cache``.
    """

    # S3 Storage Configuration
    s3_bucket: str = Field(
        default="",
        description="Bucket that holds cache archives. Required unless in mock mode."
    )
    s3_region: str = Field(
        default="",
        description="AWS region. Empty lets the profile or credential chain decide."
    )
    s3_profile: Optional[str] = Field(
        default=None,
        description="Named profile from the shared AWS config/credentials files."
    )
    s3_acl: str = Field(
        default="private",
        description="Canned ACL applied to uploaded objects. Empty omits the ACL."
    )
    s3_encryption: str = Field(
        default="",
        description="Server-side encryption mode (AES256, aws:kms). Empty sends no header."
    )
    s3_endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom endpoint for S3-compatible stores such as MinIO or Ceph."
    )
    s3_path_style: bool = Field(
        default=False,
        description="Use path-style addressing. Most S3-compatible stores need this."
    )
    s3_access_key_id: Optional[str] = Field(
        default=None,
        description="Static access key. Overrides profile and chain discovery."
    )
    s3_secret_access_key: Optional[str] = Field(
        default=None,
        description="Static secret key, paired with s3_access_key_id."
    )

    # Backend Behavior
    storage_mock_mode: bool = Field(
        default=False,
        description="Use the in-memory backend instead of S3."
    )
    storage_chunk_size: int = Field(
        default=1024 * 1024,
        gt=0,
        description="Bytes copied per read when streaming an object body to its sink."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    debug: bool = Field(
        default=False,
        description="Also emit DEBUG logs from boto3, botocore and s3transfer."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def validate_required_fields(self) -> list[str]:
        """
        Return the env names of required settings that are missing.

        Requirements depend on mock mode, so this lives outside
        Pydantic's field validation.
        """
        missing = []

        if not self.storage_mock_mode and not self.s3_bucket.strip():
            missing.append("S3_BUCKET")

        if self.s3_access_key_id and not self.s3_secret_access_key:
            missing.append("S3_SECRET_ACCESS_KEY")
        if self.s3_secret_access_key and not self.s3_access_key_id:
            missing.append("S3_ACCESS_KEY_ID")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process. Tests can call
    ``get_settings.cache_clear()`` to reload from a patched environment.
    """
    return Settings()
