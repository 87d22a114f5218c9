"""
Application settings loaded from environment variables (and `.env`).
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "craft-hindustan"

    # Credentials issued by the auth service
    jwt_secret: str = "your-secret-key-change-this-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    # HTTP
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    cors_origins: str = "http://localhost:3000,http://localhost:3001"

    # Realtime
    chat_strict_room_join: bool = False

    # Logging
    service_name: str = "marketchat"
    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
