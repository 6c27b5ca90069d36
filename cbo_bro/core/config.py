"""Конфигурация CBO-Bro Gateway"""

import logging
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AppConfig(BaseSettings):
    """Настройки приложения (env-переменные с префиксом CBO_BRO__)"""

    model_config = SettingsConfigDict(
        env_prefix="CBO_BRO__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8082
    log_level: str = "INFO"
    version: str = "1.0.0"
    allowed_origins: List[str] = ["http://localhost:3000"]

    # LLM
    llm_mode: Literal["anthropic", "fake"] = "anthropic"
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    llm_model: str = "claude-3-5-sonnet-20241022"
    llm_max_tokens: int = 4096
    llm_max_retries: int = Field(default=3, ge=1, le=10)
    request_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    stream_timeout: float = Field(default=120.0, ge=1.0, le=600.0)

    # Sessions
    session_timeout: int = 3600  # 1 hour
    session_sweep_interval: int = 60
    session_max_messages: int = 100
    session_restore_limit: int = 10

    # Connections and tools
    heartbeat_interval: float = 30.0
    tool_timeout: float = 30.0

    # Telegram
    telegram_bot_token: Optional[str] = None
    webhook_url: Optional[str] = None
    telegram_reply_deadline: float = 18.0
    telegram_menu_text: str = "Open CBO-Bro"

    # Admin JWT
    jwt_secret: str = "change-me-admin-secret"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24

    # Flat JSON storage
    data_dir: str = "config"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def whitelist_path(self) -> Path:
        return Path(self.data_dir) / "whitelist.json"

    @property
    def admin_config_dir(self) -> Path:
        return Path(self.data_dir) / "admin"


config = AppConfig()

logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("cbo-bro")
