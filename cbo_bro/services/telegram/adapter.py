"""
Telegram адаптер.

Переводит webhook апдейты Telegram в тот же "chat message", что и REST API,
и отправляет ответы обратно через Bot API. ID чата Telegram служит ID сессии.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

from telegram import Bot, MenuButtonWebApp, Update, WebAppInfo
from telegram.constants import ChatAction
from telegram.error import TelegramError

from cbo_bro.services.chat_service import ChatService
from cbo_bro.services.whitelist_service import WhitelistService

from .splitter import split_message

logger = logging.getLogger("cbo-bro.telegram")

ACCESS_RESTRICTED = (
    "🔒 Access Restricted\n\nThis bot is for authorized users only.\n\n"
    "Your user ID: {user_id}\n\nPlease contact the administrator to request access."
)
ACCESS_DENIED = (
    "🔒 Access Denied\n\nThis bot is restricted to authorized users only.\n\n"
    "Contact the administrator to request access."
)
ADMIN_REQUIRED = "⛔ This command requires admin privileges."
UNKNOWN_USER = "❌ Unable to verify user identity."
STILL_WORKING = (
    "⏱️ Processing is taking longer than expected. "
    "I'm still working on your request and will respond shortly."
)
FALLBACK_REPLY = "Sorry, I encountered an error processing your request. Please try again."

WELCOME_TEXT = """🤖 Welcome! I'm CBO-Bro, your Chief Business Optimization assistant.

I help you optimize through 4 key flows:
• 💎 VALUE - Customer delivery
• 📊 INFO - Data & decisions
• ⚙️ WORK - Operations
• 💰 CASH - Financial health

Just tell me your business challenge and I'll provide actionable insights!

💡 Pro tip: Click the menu button for a better chat experience with the Mini App!

Try: "How can I improve customer retention?" or "My cash flow is tight\""""

HELP_TEXT = """Commands:
/start - Welcome message
/help - This help menu
/status - Bot status
/clear - Reset conversation"""

ADMIN_HELP_TEXT = """

Admin Commands:
/whitelist - Show whitelisted users
/adduser <user_id> [notes] - Add user to whitelist
/removeuser <user_id> - Remove user from whitelist"""

HELP_EXAMPLES = """

Example questions:
• "How do I scale my SaaS business?"
• "Customer churn is increasing"
• "Revenue is flat, help!"

I'll analyze through Value, Info, Work & Cash flows."""


class TelegramAdapter:
    """
    Обработчик Telegram апдейтов.

    Ответ ждется не дольше reply_deadline секунд: потом пользователь получает
    промежуточное сообщение, а та же задача дорабатывает в фоне и присылает
    ответ позже. Повторной обработки сообщения не происходит.
    """

    def __init__(
        self,
        bot: Bot,
        chat_service: ChatService,
        whitelist: WhitelistService,
        reply_deadline: float = 18.0,
        menu_text: str = "Open CBO-Bro",
        version: str = "1.0.0",
    ):
        self.bot = bot
        self._chat = chat_service
        self._whitelist = whitelist
        self._deadline = reply_deadline
        self._menu_text = menu_text
        self._version = version
        self._started_at = time.monotonic()
        self._background: Set[asyncio.Task] = set()

    async def start(self) -> None:
        await self.bot.initialize()
        logger.info("Telegram bot initialized")

    async def stop(self, timeout: float = 30.0) -> None:
        if self._background:
            logger.info(f"Waiting for {len(self._background)} background Telegram replies")
            await asyncio.wait(list(self._background), timeout=timeout)
        await self.bot.shutdown()

    async def configure_webhook(self, webhook_url: str, app_url: str) -> None:
        """Зарегистрировать webhook и кнопку меню с Mini-App"""
        await self.bot.set_webhook(url=webhook_url)
        await self.bot.set_chat_menu_button(
            menu_button=MenuButtonWebApp(text=self._menu_text, web_app=WebAppInfo(url=app_url))
        )
        logger.info(f"Telegram webhook set to {webhook_url}, menu button -> {app_url}")

    async def remove_webhook(self) -> None:
        await self.bot.delete_webhook()
        logger.info("Telegram webhook removed")

    async def process_webhook(self, payload: Dict[str, Any]) -> None:
        update = Update.de_json(payload, self.bot)
        if update is None:
            logger.warning("Empty Telegram update payload")
            return
        await self.handle_update(update)

    async def handle_update(self, update: Update) -> None:
        message = update.effective_message
        chat = update.effective_chat
        if message is None or chat is None or not message.text:
            logger.debug(f"Ignoring update {update.update_id}: no text message")
            return

        user = update.effective_user
        user_id = user.id if user else None
        text = message.text.strip()
        logger.info(f"Received message from {user_id} in chat {chat.id}: {text[:100]!r}")

        if text.startswith("/"):
            await self._handle_command(chat.id, user_id, text)
        else:
            await self._handle_text(chat.id, user_id, text)

    async def send_text(self, chat_id: int, text: str) -> None:
        for chunk in split_message(text):
            await self.bot.send_message(chat_id=chat_id, text=chunk)

    # ------------------------------------------------------------------
    # Команды
    # ------------------------------------------------------------------

    async def _handle_command(self, chat_id: int, user_id: Optional[int], text: str) -> None:
        parts = text.split()
        command = parts[0][1:].split("@")[0].lower()
        args = parts[1:]

        if command == "start":
            if user_id is None or not self._whitelist.is_whitelisted(user_id):
                await self.send_text(chat_id, ACCESS_RESTRICTED.format(user_id=user_id))
                return
            await self.send_text(chat_id, WELCOME_TEXT)
            return

        if command in ("help", "status", "clear"):
            if not await self._check_whitelist(chat_id, user_id):
                return
            if command == "help":
                await self.send_text(chat_id, self._help_text(user_id))
            elif command == "status":
                uptime = int(time.monotonic() - self._started_at)
                await self.send_text(
                    chat_id,
                    f"Bot Status: ✅ Online\nAgent: CBO-Bro\nVersion: {self._version}\nUptime: {uptime}s",
                )
            else:
                self._chat.clear(str(chat_id))
                await self.send_text(chat_id, "Conversation context cleared. Fresh start! 🔄")
            return

        if command in ("whitelist", "adduser", "removeuser"):
            if user_id is None or not self._whitelist.is_admin(user_id):
                await self.send_text(chat_id, ADMIN_REQUIRED)
                return
            if command == "whitelist":
                await self.send_text(chat_id, self._whitelist_text())
            elif command == "adduser":
                await self._add_user(chat_id, args)
            else:
                await self._remove_user(chat_id, args)
            return

        # Неизвестная команда обрабатывается как обычный текст
        await self._handle_text(chat_id, user_id, text)

    def _help_text(self, user_id: int) -> str:
        text = HELP_TEXT
        if self._whitelist.is_admin(user_id):
            text += ADMIN_HELP_TEXT
        return text + HELP_EXAMPLES

    def _whitelist_text(self) -> str:
        admins = set(self._whitelist.admins())
        lines: List[str] = ["👥 Whitelisted Users:", ""]
        for user in self._whitelist.users():
            badge = "👑" if user.id in admins else "👤"
            lines.append(f"{badge} {user.first_name} (@{user.username})")
            lines.append(f"   ID: {user.id}")
            lines.append(f"   Added: {user.added_date.isoformat()}")
            lines.append("")
        return "\n".join(lines)

    async def _add_user(self, chat_id: int, args: List[str]) -> None:
        if not args:
            await self.send_text(
                chat_id, "Usage: /adduser <user_id> [notes]\n\nExample: /adduser 123456789 New team member"
            )
            return
        if not args[0].lstrip("-").isdigit():
            await self.send_text(chat_id, "Invalid user ID. Must be a number.")
            return
        result = self._whitelist.add_user(int(args[0]), notes=" ".join(args[1:]))
        await self.send_text(chat_id, ("✅ " if result.success else "❌ ") + result.message)

    async def _remove_user(self, chat_id: int, args: List[str]) -> None:
        if not args:
            await self.send_text(chat_id, "Usage: /removeuser <user_id>")
            return
        if not args[0].lstrip("-").isdigit():
            await self.send_text(chat_id, "Invalid user ID. Must be a number.")
            return
        result = self._whitelist.remove_user(int(args[0]))
        await self.send_text(chat_id, ("✅ " if result.success else "❌ ") + result.message)

    async def _check_whitelist(self, chat_id: int, user_id: Optional[int]) -> bool:
        if user_id is None:
            await self.send_text(chat_id, UNKNOWN_USER)
            return False
        if not self._whitelist.is_whitelisted(user_id):
            logger.warning(f"Unauthorized access attempt from user {user_id}")
            await self.send_text(chat_id, ACCESS_DENIED)
            return False
        return True

    # ------------------------------------------------------------------
    # Сообщения
    # ------------------------------------------------------------------

    async def _handle_text(self, chat_id: int, user_id: Optional[int], text: str) -> None:
        if not await self._check_whitelist(chat_id, user_id):
            return

        try:
            await self.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
        except TelegramError as e:
            logger.warning(f"[{chat_id}] Failed to send typing action: {e}")

        task = asyncio.create_task(self._chat.process_message(str(chat_id), text))
        done, _ = await asyncio.wait({task}, timeout=self._deadline)
        if task in done:
            await self._deliver(chat_id, task)
            return

        logger.warning(f"[{chat_id}] Reply exceeded {self._deadline:g}s, continuing in background")
        background = asyncio.create_task(self._deliver_when_ready(chat_id, task))
        self._background.add(background)
        background.add_done_callback(self._background.discard)

        try:
            await self.send_text(chat_id, STILL_WORKING)
        except TelegramError as e:
            logger.warning(f"[{chat_id}] Failed to send interim message: {e}")

    async def _deliver_when_ready(self, chat_id: int, task: asyncio.Task) -> None:
        await asyncio.wait({task})
        await self._deliver(chat_id, task)

    async def _deliver(self, chat_id: int, task: asyncio.Task) -> None:
        try:
            reply = task.result()
        except Exception as e:
            logger.error(f"[{chat_id}] Error processing message: {e}", exc_info=True)
            await self._send_fallback(chat_id)
            return

        try:
            await self.send_text(chat_id, reply)
        except TelegramError as e:
            logger.error(f"[{chat_id}] Failed to deliver reply: {e}")

    async def _send_fallback(self, chat_id: int) -> None:
        try:
            await self.send_text(chat_id, FALLBACK_REPLY)
        except TelegramError as e:
            logger.error(f"[{chat_id}] Failed to send fallback reply: {e}")
