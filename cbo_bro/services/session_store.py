"""
In-memory хранилище сессий с TTL вытеснением.

Карта сессий: единственное разделяемое изменяемое состояние сервиса.
Доступ защищен RLock, поэтому фоновый sweep и обработчики соединений не
портят ее при чередовании.
"""

import logging
import pprint
from collections import Counter
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from cbo_bro.models.session import Session, SessionMessage, SessionStats, utc_now

logger = logging.getLogger("cbo-bro.sessions")

# Сессия считается активной, если в ней была активность за последние 5 минут
ACTIVE_WINDOW = timedelta(minutes=5)


class SessionStore:
    """
    Управляет всеми сессиями: создание, доступ, изменение сообщений, вытеснение.

    Для горизонтального масштабирования карту можно заменить внешним
    key-value хранилищем с тем же контрактом get_or_create/get/update/delete.
    """

    def __init__(
        self,
        timeout: float = 3600,
        max_messages: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._sessions: Dict[str, Session] = {}
        self._lock = RLock()
        self.timeout = timedelta(seconds=timeout)
        self.max_messages = max_messages
        self._clock = clock

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """
        Вернуть сессию по ID, создав ее при первом обращении.

        Без ID генерируется новый UUID4. Неизвестный ID принимается как есть:
        Telegram chat ID и ID из Mini-App задает клиент.
        """
        with self._lock:
            if session_id and session_id in self._sessions:
                session = self._sessions[session_id]
                session.last_activity = self._clock()
                logger.debug(f"[SessionStore] Found existing session: {session_id}")
                return session

            now = self._clock()
            session = Session(id=session_id or str(uuid4()), created_at=now, last_activity=now)
            self._sessions[session.id] = session
            logger.info(f"[SessionStore] Created session: {session.id}")
            return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session:
                session.last_activity = self._clock()
            logger.debug(
                f"[SessionStore] Get session: {session_id} -> {'found' if session else 'not found'}"
            )
            return session

    def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def update(self, session_id: str, session: Session) -> bool:
        """Заменить состояние сессии. Для неизвестного ID возвращает False."""
        with self._lock:
            if session_id not in self._sessions:
                logger.warning(f"[SessionStore] update: Session {session_id} not found")
                return False
            session.last_activity = self._clock()
            self._sessions[session_id] = session
            return True

    def delete(self, session_id: str) -> bool:
        with self._lock:
            if session_id in self._sessions:
                logger.info(f"[SessionStore] Deleting session: {session_id}")
                del self._sessions[session_id]
                return True
            logger.warning(f"[SessionStore] Tried to delete non-existent session: {session_id}")
            return False

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        message_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Добавить сообщение в конец истории.

        Если история превышает max_messages, самые старые сообщения
        отбрасываются.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                logger.error(f"[SessionStore] append_message: Session {session_id} not found")
                return False

            now = self._clock()
            msg = SessionMessage(role=role, content=content, timestamp=now, metadata=metadata or {})
            if message_id:
                msg.id = message_id
            session.messages.append(msg)
            if len(session.messages) > self.max_messages:
                del session.messages[: len(session.messages) - self.max_messages]
            session.last_activity = now
            logger.debug(
                f"[SessionStore] Appended message to {session_id}:\n"
                + pprint.pformat(msg.model_dump(mode="json"), indent=2, width=120)
            )
            return True

    def get_history(self, session_id: str, limit: int = 10) -> List[SessionMessage]:
        """Последние limit сообщений в хронологическом порядке"""
        with self._lock:
            session = self.get(session_id)
            if not session:
                return []
            if limit <= 0:
                return []
            return list(session.messages[-limit:])

    def update_context(self, session_id: str, **updates: Any) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                logger.warning(f"[SessionStore] update_context: Session {session_id} not found")
                return False
            for key, value in updates.items():
                if not hasattr(session.context, key):
                    raise ValueError(f"Unknown context field: {key}")
                setattr(session.context, key, value)
            session.last_activity = self._clock()
            logger.debug(f"[SessionStore] Context updated for {session_id}: {updates}")
            return True

    def clear(self, session_id: str) -> bool:
        """Очистить историю и активные инструменты, сохранив сессию"""
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return False
            session.messages.clear()
            session.context.active_tools.clear()
            session.last_activity = self._clock()
            logger.info(f"[SessionStore] Cleared session: {session_id}")
            return True

    def export_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return None
            return session.model_dump(by_alias=True, mode="json")

    def import_session(self, data: Dict[str, Any]) -> Optional[Session]:
        """Восстановить сессию из экспортированного словаря"""
        try:
            session = Session.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[SessionStore] import_session: invalid data: {e}")
            return None
        with self._lock:
            session.last_activity = self._clock()
            self._sessions[session.id] = session
            logger.info(f"[SessionStore] Imported session: {session.id}")
            return session

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def all_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def stats(self) -> SessionStats:
        with self._lock:
            now = self._clock()
            sessions = list(self._sessions.values())
            active = sum(1 for s in sessions if now - s.last_activity < ACTIVE_WINDOW)
            total_messages = sum(len(s.messages) for s in sessions)
            modes = Counter(s.context.mode for s in sessions)
            return SessionStats(
                total=len(sessions),
                active=active,
                idle=len(sessions) - active,
                avg_messages=round(total_messages / len(sessions), 2) if sessions else 0.0,
                modes=dict(modes),
            )

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Удалить сессии, неактивные дольше timeout.

        Проход идет по снимку карты; сессия с простоем ровно timeout
        не удаляется.

        Returns:
            Количество удаленных сессий
        """
        now = now or self._clock()
        removed = 0
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if now - session.last_activity > self.timeout:
                    del self._sessions[session_id]
                    removed += 1
                    logger.info(f"[SessionStore] Session expired: {session_id}")
        if removed:
            logger.info(f"[SessionStore] Sweep removed {removed} session(s)")
        return removed
