"""
Хранилище конфигурации бота для админ-панели.

Плоские JSON файлы в admin_config_dir:
    active.json       - активная конфигурация
    history.json      - история сохранений (новые первыми, не более 50)
    deployments.json  - история деплоев (новые первыми, не более 100)
"""

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from cbo_bro.core.errors import ConfigValidationError, DeploymentNotFoundError
from cbo_bro.models.admin import (
    BotConfig,
    ConfigExport,
    ConfigHistoryEntry,
    Deployment,
    DeploymentStatus,
    OperationResult,
)
from cbo_bro.models.session import utc_now

logger = logging.getLogger("cbo-bro.admin.config")

MAX_HISTORY = 50
MAX_DEPLOYMENTS = 100
MIN_PROMPT_LENGTH = 50

DEFAULT_SYSTEM_PROMPT = """You are CBO-Bro, Chief Business Optimization expert using the BroVerse Biz Mental Model (BBMM).

Your role is to analyze business challenges through the lens of Four Flows:
1. VALUE FLOW - Customer value creation and delivery
2. INFO FLOW - Data, insights, and decision-making
3. WORK FLOW - Operations and process efficiency
4. CASH FLOW - Financial health and sustainability

When responding:
1. Identify the primary flow(s) affected
2. Provide 2-3 specific, actionable recommendations
3. Suggest immediate next steps
4. Keep total response under 1000 characters when possible"""

DEFAULT_FLOW_KEYWORDS: Dict[str, List[str]] = {
    "value": ["customer", "user", "satisfaction", "experience", "retention", "value", "service", "product"],
    "info": ["data", "analytics", "metrics", "insights", "report", "information", "analysis", "intelligence"],
    "work": ["process", "operation", "efficiency", "productivity", "workflow", "automation", "optimization"],
    "cash": ["revenue", "cost", "profit", "financial", "cash", "money", "budget", "investment"],
}

GENERAL_FLOW = "General"


def default_bot_config() -> BotConfig:
    return BotConfig(system_prompt=DEFAULT_SYSTEM_PROMPT, flow_keywords=DEFAULT_FLOW_KEYWORDS)


def flow_label(key: str) -> str:
    return f"{key.capitalize()} Flow"


def detect_flow_key(message: str, flow_keywords: Optional[Dict[str, List[str]]] = None) -> Optional[str]:
    """
    Ключ потока с наибольшим числом совпавших ключевых слов.

    При равенстве побеждает первый по порядку; без совпадений None.
    """
    text = message.lower()
    best: Optional[str] = None
    best_score = 0
    for key, keywords in (flow_keywords or DEFAULT_FLOW_KEYWORDS).items():
        score = sum(1 for keyword in keywords if keyword.lower() in text)
        if score > best_score:
            best, best_score = key, score
    return best


def detect_flow(message: str, flow_keywords: Optional[Dict[str, List[str]]] = None) -> str:
    """Название основного потока сообщения или "General" """
    key = detect_flow_key(message, flow_keywords)
    return flow_label(key) if key else GENERAL_FLOW


def config_hash(config: BotConfig) -> str:
    payload = json.dumps(config.model_dump(mode="json"), separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:8]


def generate_version(now: datetime) -> str:
    return f"v2.{now.month}.{now.day}"


def validate_config(config: BotConfig) -> List[str]:
    errors: List[str] = []
    settings = config.model_settings
    if not settings.provider:
        errors.append("Provider is required")
    if not settings.model:
        errors.append("Model is required")
    if not 0 <= settings.temperature <= 1:
        errors.append("Temperature must be between 0 and 1")
    if not 100 <= settings.max_tokens <= 4000:
        errors.append("Max tokens must be between 100 and 4000")
    if len(config.system_prompt or "") < MIN_PROMPT_LENGTH:
        errors.append(f"System prompt must be at least {MIN_PROMPT_LENGTH} characters")
    return errors


class ConfigService:
    """
    Управляет активной конфигурацией, историей и деплоями.

    Пример:
        >>> service = ConfigService(Path("config/admin"))
        >>> service.update_prompt("You are CBO-Bro ...")
        >>> service.deploy("production", deployed_by="admin")
    """

    def __init__(self, config_dir: Path, clock: Callable[[], datetime] = utc_now):
        self.config_dir = Path(config_dir)
        self.active_file = self.config_dir / "active.json"
        self.history_file = self.config_dir / "history.json"
        self.deployments_file = self.config_dir / "deployments.json"
        self._clock = clock
        self._lock = RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        if not self.active_file.exists():
            self.save_config(default_bot_config())
            logger.info("Created default active configuration")
        if not self.history_file.exists():
            self._write(self.history_file, [])
        if not self.deployments_file.exists():
            initial = Deployment(
                version="v2.0.0",
                deployed_at=self._clock(),
                deployed_by="system",
                environment="production",
                config_hash=config_hash(self.get_active_config()),
            )
            self._write(self.deployments_file, [initial.model_dump(mode="json")])
            logger.info("Created initial deployment record")

    def _read(self, path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    def get_active_config(self) -> BotConfig:
        try:
            return BotConfig.model_validate(self._read(self.active_file))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error reading active config, using defaults: {e}")
            return default_bot_config()

    def save_config(self, config: BotConfig) -> OperationResult:
        """
        Проверить и сохранить конфигурацию как активную.

        Raises:
            ConfigValidationError: Конфигурация не прошла проверку
        """
        errors = validate_config(config)
        if errors:
            logger.warning(f"Configuration rejected: {errors}")
            raise ConfigValidationError(errors)

        with self._lock:
            self._write(self.active_file, config.model_dump(mode="json"))
            self._add_to_history(config)
        logger.info("Configuration saved successfully")
        return OperationResult(success=True, message="Configuration saved")

    def update_prompt(self, prompt: str) -> OperationResult:
        config = self.get_active_config()
        config.system_prompt = prompt
        return self.save_config(config)

    def _add_to_history(self, config: BotConfig) -> None:
        entry = ConfigHistoryEntry(
            **config.model_dump(),
            saved_at=self._clock(),
            hash=config_hash(config),
        )
        history = [e.model_dump(mode="json") for e in self.get_history()]
        history.insert(0, entry.model_dump(mode="json"))
        self._write(self.history_file, history[:MAX_HISTORY])

    def get_history(self) -> List[ConfigHistoryEntry]:
        try:
            return [ConfigHistoryEntry.model_validate(item) for item in self._read(self.history_file)]
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error reading history: {e}")
            return []

    def get_deployment_history(self) -> List[Deployment]:
        try:
            return [Deployment.model_validate(item) for item in self._read(self.deployments_file)]
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Error reading deployment history: {e}")
            return []

    def get_deployment_status(self) -> DeploymentStatus:
        deployments = self.get_deployment_history()
        return DeploymentStatus(
            current=next((d for d in deployments if d.status == "active"), None),
            last_deployment=deployments[0] if deployments else None,
            total_deployments=len(deployments),
        )

    def deploy(self, environment: str, deployed_by: str) -> Deployment:
        """Зафиксировать активную конфигурацию как деплой в окружение"""
        with self._lock:
            config = self.get_active_config()
            deployments = self.get_deployment_history()
            now = self._clock()
            deployment = Deployment(
                version=generate_version(now),
                deployed_at=now,
                deployed_by=deployed_by,
                environment=environment,
                config_hash=config_hash(config),
                config_snapshot=config,
            )
            for previous in deployments:
                if previous.environment == environment:
                    previous.status = "inactive"
            deployments.insert(0, deployment)
            self._write(
                self.deployments_file,
                [d.model_dump(mode="json") for d in deployments[:MAX_DEPLOYMENTS]],
            )
        logger.info(f"Deployed {deployment.version} to {environment} by {deployed_by}")
        return deployment

    def rollback(self, version: str) -> OperationResult:
        """
        Восстановить конфигурацию из снапшота деплоя.

        Raises:
            DeploymentNotFoundError: Версии нет в истории или у нее нет снапшота
        """
        with self._lock:
            deployments = self.get_deployment_history()
            target = next((d for d in deployments if d.version == version), None)
            if target is None:
                raise DeploymentNotFoundError(version)
            if target.config_snapshot is None:
                raise DeploymentNotFoundError(version, reason="has no configuration snapshot")

            self.save_config(target.config_snapshot)
            for deployment in deployments:
                deployment.status = "active" if deployment is target else "inactive"
            self._write(self.deployments_file, [d.model_dump(mode="json") for d in deployments])
        logger.info(f"Rolled back to version {version}")
        return OperationResult(success=True, message=f"Rolled back to {version}")

    def export_config(self) -> ConfigExport:
        return ConfigExport(
            exported_at=self._clock(),
            active_config=self.get_active_config(),
            recent_deployments=self.get_deployment_history()[:10],
            recent_history=self.get_history()[:10],
        )

    def import_config(self, data: Dict[str, Any]) -> OperationResult:
        """
        Импортировать конфигурацию из бэкапа (формат export_config).

        Raises:
            ConfigValidationError: Нет active_config или он невалиден
        """
        raw = data.get("active_config")
        if not raw:
            raise ConfigValidationError(["Invalid import data: missing active_config"])
        try:
            config = BotConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigValidationError([err["msg"] for err in e.errors()]) from e
        self.save_config(config)
        logger.info("Configuration imported successfully")
        return OperationResult(success=True, message="Configuration imported")
