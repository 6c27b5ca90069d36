"""
Модели админ-панели: конфигурация бота, whitelist, деплой.

Конфигурация хранится в плоских JSON файлах в snake_case, как ее пишет
админ-панель.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelSettings(BaseModel):
    # Ограничения (temperature 0..1, max_tokens 100..4000) проверяет ConfigService,
    # чтобы вернуть все ошибки разом
    provider: str = "anthropic"
    model: str = "claude-3-5-sonnet-20241022"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout: int = 30


class BotFeatures(BaseModel):
    enable_mcp_tools: bool = False
    enable_memory_bank: bool = True
    enable_analytics: bool = True
    enable_auto_save: bool = True


class BotConfig(BaseModel):
    """Активная конфигурация бота"""

    model_config = ConfigDict(protected_namespaces=())

    version: str = "v2.0.0"
    model_settings: ModelSettings = Field(default_factory=ModelSettings)
    system_prompt: str = ""
    flow_keywords: Dict[str, List[str]] = Field(default_factory=dict)
    features: BotFeatures = Field(default_factory=BotFeatures)


class ConfigHistoryEntry(BotConfig):
    """Снапшот конфигурации в истории (новые записи первыми)"""

    saved_at: datetime
    hash: str


class Deployment(BaseModel):
    version: str
    deployed_at: datetime
    deployed_by: str
    environment: str
    config_hash: str
    status: str = "active"
    config_snapshot: Optional[BotConfig] = None


class DeploymentStatus(BaseModel):
    current: Optional[Deployment] = None
    last_deployment: Optional[Deployment] = None
    total_deployments: int = 0


class ConfigExport(BaseModel):
    exported_at: datetime
    active_config: BotConfig
    recent_deployments: List[Deployment] = Field(default_factory=list)
    recent_history: List[ConfigHistoryEntry] = Field(default_factory=list)


class WhitelistUser(BaseModel):
    id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    added_date: date
    notes: str = ""


class WhitelistData(BaseModel):
    users: List[WhitelistUser] = Field(default_factory=list)
    admins: List[int] = Field(default_factory=list)


class OperationResult(BaseModel):
    success: bool
    message: str


# ---------------------------------------------------------------------------
# Запросы админ API
# ---------------------------------------------------------------------------


class TelegramAuthRequest(BaseModel):
    """Данные Telegram Login Widget"""

    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None
    auth_date: Optional[int] = None
    hash: Optional[str] = None


class AdminAuthResponse(BaseModel):
    token: str
    user: Dict[str, Any]


class ConfigUpdateRequest(BaseModel):
    config: BotConfig


class PromptUpdateRequest(BaseModel):
    prompt: str


class ConfigTestRequest(BaseModel):
    message: str = Field(min_length=1)
    config: Optional[BotConfig] = None


class DeployRequest(BaseModel):
    environment: str = "production"


class RollbackRequest(BaseModel):
    version: str


