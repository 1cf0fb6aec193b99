from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    STORAGE_BACKEND: str = "sql"  # "sql" or "dynamodb"
    DATABASE_URL: str = "sqlite:///./eventhub.db"

    DYNAMODB_ENDPOINT_URL: str | None = "http://dynamodb-local:8000"
    DYNAMODB_TABLE: str = "EventHub"
    AWS_DEFAULT_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: str = "fake"
    AWS_SECRET_ACCESS_KEY: str = "fake"

    STORAGE_TIMEOUT_SECONDS: float = 5.0
    LOG_LEVEL: str = "INFO"

    # tell Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
