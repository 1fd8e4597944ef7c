from __future__ import annotations

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    THEME_DEPLOYER_DB_URL: str = "sqlite:///./theme_deployer.db"
    SHOPIFY_ADMIN_API_VERSION: str = "2025-10"
    SHOPIFY_REQUEST_TIMEOUT_SECONDS: float = 30.0
    THEME_DEPLOYER_INTERNAL_API_TOKEN: str | None = None
    THEME_DEPLOYER_LOG_LEVEL: str = "INFO"
    THEME_UPLOAD_DEFAULT_MIME_TYPE: str = "application/zip"

    @field_validator("THEME_DEPLOYER_LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in logging.getLevelNamesMapping():
            raise ValueError(f"THEME_DEPLOYER_LOG_LEVEL must be a logging level name, got {value!r}")
        return normalized

    @field_validator("THEME_DEPLOYER_INTERNAL_API_TOKEN")
    @classmethod
    def blank_token_disables_auth(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @property
    def internal_auth_enabled(self) -> bool:
        return self.THEME_DEPLOYER_INTERNAL_API_TOKEN is not None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
