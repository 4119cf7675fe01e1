from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./meditrack.db"
    DATABASE_ECHO: bool = False

    # Logging
    LOG_FILE: str = "meditrack.log"
    LOG_LEVEL: str = "DEBUG"
    LOG_ROTATION: str = "500 MB"

    # Inventory defaults
    DEFAULT_TIMEZONE: str = "UTC"
    EXPIRY_WARNING_DAYS: int = 30
    DEFAULT_ITEM_THRESHOLD: int = 10

    # Server
    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
