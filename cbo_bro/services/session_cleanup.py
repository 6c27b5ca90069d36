"""
Фоновое вытеснение неактивных сессий.

Периодически вызывает SessionStore.sweep(), чтобы сессии брошенных вкладок и
Telegram чатов не копились в памяти.
"""

import asyncio
import logging
from typing import Optional

from cbo_bro.services.session_store import SessionStore

logger = logging.getLogger("cbo-bro.sessions.sweeper")


class SessionSweeper:
    """
    Фоновая задача очистки сессий.

    Атрибуты:
        _store: Хранилище сессий
        _interval: Интервал между проходами (секунды)
        _task: Фоновая задача

    Пример:
        >>> sweeper = SessionSweeper(session_store, interval=60)
        >>> await sweeper.start()
        >>> ...
        >>> await sweeper.stop()
    """

    def __init__(self, store: SessionStore, interval: float = 60):
        self._store = store
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._running = False

        logger.info(f"SessionSweeper initialized (interval={interval}s)")

    async def start(self):
        """Запустить фоновую очистку"""
        if self._running:
            logger.warning("SessionSweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info("SessionSweeper started")

    async def stop(self):
        """Остановить фоновую очистку и дождаться завершения задачи"""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("SessionSweeper stopped")

    async def _sweep_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                self._perform_sweep()
            except asyncio.CancelledError:
                logger.info("Sweep loop cancelled")
                break
            except Exception as e:
                # Ошибка одного прохода не останавливает цикл
                logger.error(f"Error in sweep loop: {e}", exc_info=True)

    def _perform_sweep(self) -> int:
        count = self._store.sweep()
        if count > 0:
            logger.info(f"Swept {count} idle sessions, {self._store.count()} remaining")
        else:
            logger.debug("No idle sessions to sweep")
        return count

    async def sweep_now(self) -> int:
        """
        Выполнить очистку немедленно (вне расписания).

        Returns:
            Количество удаленных сессий
        """
        logger.info("Manual sweep triggered")
        return self._perform_sweep()

    def is_running(self) -> bool:
        return self._running
