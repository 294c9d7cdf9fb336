# catsof/config.py
import sys

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal

from catsof.core.domain import (
    AirtableCredentials,
    CloudinaryCredentials,
    Credentials,
    IngestionLimits,
)
from catsof.core.errors import ConfigurationError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    allowed_origins: list[str] = ["*"]
    enable_request_logging: bool = True
    thanks_url: str = "/thanks/"  # Where HTML form posts land after a submission

    # Airtable (record store)
    airtable_token: str | None = None
    airtable_base_id: str | None = None
    airtable_table_name: str = "Cats"
    airtable_view: str = "Approved"  # View listing moderated records

    # Cloudinary (image hosting)
    cloudinary_cloud_name: str | None = None
    cloudinary_api_key: str | None = None
    cloudinary_api_secret: str | None = None
    cloudinary_folder: str = "catsof-dev"  # Empty string uploads to the account root

    # Image ingestion limits
    image_max_file_size_mb: int = 8
    fetch_timeout_seconds: float = 15.0
    fetch_max_redirects: int = 4

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def airtable_enabled(self) -> bool:
        return bool(self.airtable_token and self.airtable_base_id)

    @property
    def cloudinary_enabled(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )

    def airtable_credentials(self) -> AirtableCredentials:
        if not self.airtable_enabled:
            raise ConfigurationError("Missing Airtable configuration.")
        return AirtableCredentials(
            token=self.airtable_token,
            base_id=self.airtable_base_id,
            table_name=self.airtable_table_name or "Cats",
            view=self.airtable_view or "Approved",
        )

    def cloudinary_credentials(self) -> CloudinaryCredentials:
        if not self.cloudinary_enabled:
            raise ConfigurationError("Missing Cloudinary configuration.")
        return CloudinaryCredentials(
            cloud_name=self.cloudinary_cloud_name,
            api_key=self.cloudinary_api_key,
            api_secret=self.cloudinary_api_secret,
            folder=self.cloudinary_folder.strip() or None,
        )

    def credentials(self) -> Credentials:
        return Credentials(
            airtable=self.airtable_credentials(),
            cloudinary=self.cloudinary_credentials(),
        )

    def submission_credentials(self) -> Credentials:
        """Airtable is required up front; Cloudinary is checked by the service"""
        return Credentials(
            airtable=self.airtable_credentials(),
            cloudinary=self.cloudinary_credentials() if self.cloudinary_enabled else None,
        )

    def ingestion_limits(self) -> IngestionLimits:
        return IngestionLimits(
            max_image_bytes=self.image_max_file_size_mb * 1024 * 1024,
            fetch_timeout_seconds=self.fetch_timeout_seconds,
            max_redirects=self.fetch_max_redirects,
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        required_fields = [
            ("airtable_token", self.airtable_token),
            ("airtable_base_id", self.airtable_base_id),
            ("cloudinary_cloud_name", self.cloudinary_cloud_name),
            ("cloudinary_api_key", self.cloudinary_api_key),
            ("cloudinary_api_secret", self.cloudinary_api_secret),
        ]
        return [name for name, value in required_fields if not value]


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if not s.airtable_enabled:
        warnings.append("Airtable is not configured (submissions will fail with 500, gallery is empty).")
    if not s.cloudinary_enabled:
        warnings.append("Cloudinary is not configured (submissions will fail with 500).")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.image_max_file_size_mb > 20:
        warnings.append(f"image_max_file_size_mb={s.image_max_file_size_mb} (large bodies are buffered in memory).")
    if s.fetch_timeout_seconds > 30:
        warnings.append(f"fetch_timeout_seconds={s.fetch_timeout_seconds} (slow origins hold a worker this long).")
    if s.fetch_max_redirects > 10:
        warnings.append(f"fetch_max_redirects={s.fetch_max_redirects} is unusually high.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}", file=sys.stderr)


settings = Settings()
validate_or_warn(settings)
