"""
Whitelist пользователей Telegram и Mini-App.

Хранится в плоском JSON файле: {"users": [...], "admins": [id, ...]}.
"""

import json
import logging
from datetime import date
from pathlib import Path
from threading import RLock
from typing import Any, List, Optional, Union

from pydantic import ValidationError

from cbo_bro.models.admin import OperationResult, WhitelistData, WhitelistUser

logger = logging.getLogger("cbo-bro.whitelist")

UserId = Union[int, str]


def normalize_user_id(user_id: Any) -> Optional[int]:
    """Telegram ID приходят числом или строкой; нечисловой ID не пропускаем"""
    if isinstance(user_id, bool):
        return None
    if isinstance(user_id, int):
        return user_id
    try:
        return int(str(user_id).strip())
    except (TypeError, ValueError):
        return None


class WhitelistService:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = RLock()
        self._data = WhitelistData()
        self.load()

    def load(self) -> None:
        with self._lock:
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
                self._data = WhitelistData.model_validate(raw)
                logger.info(
                    f"Whitelist loaded: {len(self._data.users)} users, {len(self._data.admins)} admins"
                )
            except FileNotFoundError:
                logger.warning(f"Whitelist file not found: {self.path}, starting empty")
                self._data = WhitelistData()
            except (json.JSONDecodeError, ValidationError) as e:
                logger.error(f"Failed to load whitelist from {self.path}: {e}")
                self._data = WhitelistData()

    def save(self) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(self._data.model_dump(mode="json"), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            logger.info("Whitelist saved successfully")

    def is_whitelisted(self, user_id: UserId) -> bool:
        uid = normalize_user_id(user_id)
        with self._lock:
            return uid is not None and any(user.id == uid for user in self._data.users)

    def is_admin(self, user_id: UserId) -> bool:
        uid = normalize_user_id(user_id)
        with self._lock:
            return uid is not None and uid in self._data.admins

    def add_user(
        self,
        user_id: UserId,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        notes: str = "",
    ) -> OperationResult:
        uid = normalize_user_id(user_id)
        if uid is None:
            return OperationResult(success=False, message="Invalid user ID")
        with self._lock:
            if self.is_whitelisted(uid):
                return OperationResult(success=False, message="User already whitelisted")
            self._data.users.append(
                WhitelistUser(
                    id=uid,
                    username=username or "N/A",
                    first_name=first_name or "N/A",
                    added_date=date.today(),
                    notes=notes,
                )
            )
            self.save()
        logger.info(f"User {uid} added to whitelist")
        return OperationResult(success=True, message="User added to whitelist")

    def remove_user(self, user_id: UserId) -> OperationResult:
        """Удалить пользователя; права админа снимаются вместе с ним"""
        uid = normalize_user_id(user_id)
        with self._lock:
            before = len(self._data.users)
            self._data.users = [user for user in self._data.users if user.id != uid]
            if len(self._data.users) == before:
                return OperationResult(success=False, message="User not found in whitelist")
            self._data.admins = [admin for admin in self._data.admins if admin != uid]
            self.save()
        logger.info(f"User {uid} removed from whitelist")
        return OperationResult(success=True, message="User removed from whitelist")

    def add_admin(self, user_id: UserId) -> OperationResult:
        uid = normalize_user_id(user_id)
        with self._lock:
            if not self.is_whitelisted(uid):
                return OperationResult(success=False, message="User must be whitelisted first")
            if self.is_admin(uid):
                return OperationResult(success=False, message="User is already an admin")
            self._data.admins.append(uid)
            self.save()
        return OperationResult(success=True, message="User promoted to admin")

    def remove_admin(self, user_id: UserId) -> OperationResult:
        uid = normalize_user_id(user_id)
        with self._lock:
            if not self.is_admin(uid):
                return OperationResult(success=False, message="User is not an admin")
            self._data.admins = [admin for admin in self._data.admins if admin != uid]
            self.save()
        return OperationResult(success=True, message="Admin privileges removed")

    def users(self) -> List[WhitelistUser]:
        with self._lock:
            return list(self._data.users)

    def admins(self) -> List[int]:
        with self._lock:
            return list(self._data.admins)
