import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application configuration loaded from the environment (and `.env`)."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = Field(default="sqlite:///./flavourly.db")
    # Upper bound for one recipe write, ingredient upserts included
    transaction_timeout_seconds: float = Field(default=30.0, gt=0)
    session_cookie_name: str = "session_token"

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    disable_cloudinary: bool = False
    media_delete_timeout_seconds: float = Field(default=10.0, gt=0)

    log_level: str = "INFO"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    @field_validator("cloudinary_cloud_name", "cloudinary_api_key", "cloudinary_api_secret")
    @classmethod
    def strip_credentials(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )

    def model_post_init(self, __context) -> None:
        if not self.disable_cloudinary and not self.cloudinary_configured:
            logger.warning(
                "Cloudinary credentials are not configured. "
                "Media files of deleted recipes will not be removed from the CDN."
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
