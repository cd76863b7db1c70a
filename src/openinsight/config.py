from __future__ import annotations

from enum import Enum

from pydantic import ConfigDict, SecretStr, field_validator
from pydantic_settings import BaseSettings


class DatabaseType(str, Enum):
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    @classmethod
    def parse(cls, value: str | DatabaseType) -> DatabaseType:
        """Resolve a protocol tag, accepting the aliases used in connection URLs."""
        if isinstance(value, DatabaseType):
            return value
        tag = value.strip().lower()
        return cls(_ALIASES.get(tag, tag))


_ALIASES = {
    "postgresql": "postgres",
    "mysql2": "mysql",
    "file": "sqlite",
}


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # LLM
    openrouter_key: SecretStr = SecretStr("")
    openrouter_model: str = "google/gemini-2.5-flash"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    llm_temperature: float = 0.3
    llm_repair_temperature: float = 0.2
    llm_max_tokens: int = 500
    llm_timeout_seconds: float = 60.0

    # Database
    db_connect_timeout_seconds: float = 15.0
    db_query_timeout_seconds: float = 60.0

    # Session
    history_max_turns: int = 10
    config_dir: str = ".openinsight"

    # App
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def has_api_key(self) -> bool:
        return bool(self.openrouter_key.get_secret_value())


def get_settings() -> Settings:
    return Settings()
