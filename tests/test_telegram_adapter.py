"""
Unit тесты для TelegramAdapter и split_message.
"""

import pytest
from unittest.mock import AsyncMock

from telegram.constants import ChatAction
from telegram.error import NetworkError

from cbo_bro.core.errors import UpstreamError
from cbo_bro.services.chat_service import ChatService
from cbo_bro.services.llm import FakeLLMClient
from cbo_bro.services.telegram import TelegramAdapter, split_message
from cbo_bro.services.telegram.adapter import (
    ACCESS_DENIED,
    ADMIN_REQUIRED,
    FALLBACK_REPLY,
    STILL_WORKING,
    WELCOME_TEXT,
)

ADMIN_ID = 111
USER_ID = 222
STRANGER_ID = 333


def make_update(text, user_id=USER_ID, chat_id=None, update_id=1):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "date": 1700000000,
            "chat": {"id": chat_id or user_id, "type": "private"},
            "from": {"id": user_id, "is_bot": False, "first_name": "Ann"},
            "text": text,
        },
    }


@pytest.fixture
def bot():
    bot = AsyncMock()
    bot.defaults = None
    return bot


@pytest.fixture
def make_adapter(bot, session_store, config_service, whitelist):
    def _make(llm=None, reply_deadline=1.0):
        chat_service = ChatService(session_store, llm or FakeLLMClient(), config_service)
        return TelegramAdapter(bot, chat_service, whitelist, reply_deadline=reply_deadline, version="1.2.3")

    return _make


def sent_texts(bot):
    return [call.kwargs["text"] for call in bot.send_message.call_args_list]


class TestSplitMessage:
    """Tests for split_message."""

    @pytest.mark.parametrize(
        "text,limit",
        [
            ("a" * 10000, 4096),
            ("line\n" * 3000, 4096),
            ("word " * 50, 7),
            ("😀" * 25, 10),
            ("short", 4096),
        ],
    )
    def test_chunks_fit_and_concatenate(self, text, limit):
        chunks = split_message(text, limit)

        assert "".join(chunks) == text
        assert all(0 < len(chunk) <= limit for chunk in chunks)

    def test_prefers_newline_boundary(self):
        text = "a" * 8 + "\n" + "b" * 8

        assert split_message(text, 10) == ["a" * 8 + "\n", "b" * 8]

    def test_hard_cut_without_newline(self):
        assert split_message("abcdefghij", 4) == ["abcd", "efgh", "ij"]

    def test_empty_text(self):
        assert split_message("") == []

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            split_message("text", 0)


class TestTelegramAdapter:
    """Tests for webhook update handling."""

    @pytest.mark.asyncio
    async def test_reply_to_whitelisted_user(self, make_adapter, bot, session_store):
        adapter = make_adapter(FakeLLMClient(reply="Focus on retention."))

        await adapter.process_webhook(make_update("Customers leave us"))

        bot.send_chat_action.assert_awaited_once_with(chat_id=USER_ID, action=ChatAction.TYPING)
        assert sent_texts(bot) == ["Focus on retention."]
        history = session_store.get_history(str(USER_ID))
        assert [(m.role, m.content) for m in history] == [
            ("user", "Customers leave us"),
            ("assistant", "Focus on retention."),
        ]

    @pytest.mark.asyncio
    async def test_rejects_unknown_user(self, make_adapter, bot, session_store):
        llm = FakeLLMClient()
        adapter = make_adapter(llm)

        await adapter.process_webhook(make_update("Hello", user_id=STRANGER_ID))

        assert sent_texts(bot) == [ACCESS_DENIED]
        assert llm.calls == []
        assert not session_store.exists(str(STRANGER_ID))

    @pytest.mark.asyncio
    async def test_start_command(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.process_webhook(make_update("/start"))
        await adapter.process_webhook(make_update("/start", user_id=STRANGER_ID, update_id=2))

        texts = sent_texts(bot)
        assert texts[0] == WELCOME_TEXT
        assert "Access Restricted" in texts[1]
        assert str(STRANGER_ID) in texts[1]

    @pytest.mark.asyncio
    async def test_help_shows_admin_commands_to_admins(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.process_webhook(make_update("/help", user_id=USER_ID))
        await adapter.process_webhook(make_update("/help", user_id=ADMIN_ID, update_id=2))

        user_help, admin_help = sent_texts(bot)
        assert "/adduser" not in user_help
        assert "/adduser" in admin_help

    @pytest.mark.asyncio
    async def test_status_command(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.process_webhook(make_update("/status"))

        assert "Version: 1.2.3" in sent_texts(bot)[0]

    @pytest.mark.asyncio
    async def test_clear_command(self, make_adapter, bot, session_store):
        adapter = make_adapter()
        await adapter.process_webhook(make_update("Hello"))

        await adapter.process_webhook(make_update("/clear", update_id=2))

        assert session_store.get_history(str(USER_ID)) == []
        assert "cleared" in sent_texts(bot)[-1]

    @pytest.mark.asyncio
    async def test_unknown_command_is_text(self, make_adapter, bot):
        llm = FakeLLMClient()
        adapter = make_adapter(llm)

        await adapter.process_webhook(make_update("/pricing ideas"))

        assert sent_texts(bot) == ["Echo: /pricing ideas"]

    @pytest.mark.asyncio
    async def test_admin_commands(self, make_adapter, bot, whitelist):
        adapter = make_adapter()

        await adapter.process_webhook(make_update("/adduser 444 New hire", user_id=ADMIN_ID))
        await adapter.process_webhook(make_update("/whitelist", user_id=ADMIN_ID, update_id=2))
        await adapter.process_webhook(make_update("/removeuser 444", user_id=ADMIN_ID, update_id=3))

        texts = sent_texts(bot)
        assert texts[0] == "✅ User added to whitelist"
        assert "ID: 444" in texts[1]
        assert texts[2] == "✅ User removed from whitelist"
        assert not whitelist.is_whitelisted(444)

    @pytest.mark.asyncio
    async def test_admin_commands_require_admin(self, make_adapter, bot, whitelist):
        adapter = make_adapter()

        await adapter.process_webhook(make_update("/adduser 444", user_id=USER_ID))

        assert sent_texts(bot) == [ADMIN_REQUIRED]
        assert not whitelist.is_whitelisted(444)

    @pytest.mark.asyncio
    async def test_adduser_validates_id(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.process_webhook(make_update("/adduser bob", user_id=ADMIN_ID))

        assert sent_texts(bot) == ["Invalid user ID. Must be a number."]

    @pytest.mark.asyncio
    async def test_long_reply_is_split(self, make_adapter, bot):
        adapter = make_adapter(FakeLLMClient(reply="x" * 5000))

        await adapter.process_webhook(make_update("Tell me everything"))

        assert [len(t) for t in sent_texts(bot)] == [4096, 904]

    @pytest.mark.asyncio
    async def test_upstream_error_sends_fallback(self, make_adapter, bot, session_store):
        adapter = make_adapter(FakeLLMClient(error=UpstreamError("Overloaded")))

        await adapter.process_webhook(make_update("Hello"))

        assert sent_texts(bot) == [FALLBACK_REPLY]
        assert [m.role for m in session_store.get_history(str(USER_ID))] == ["user"]

    @pytest.mark.asyncio
    async def test_slow_reply_delivered_in_background_once(self, make_adapter, bot):
        """После дедлайна приходит промежуточное сообщение, ответ - позже и один раз."""
        llm = FakeLLMClient(reply="late answer", chunk_delay=0.1)
        adapter = make_adapter(llm, reply_deadline=0.02)

        await adapter.process_webhook(make_update("Hard question"))

        assert sent_texts(bot) == [STILL_WORKING]

        await adapter.stop()

        assert sent_texts(bot) == [STILL_WORKING, "late answer"]
        assert len(llm.calls) == 1
        bot.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_slow_reply_delivered_when_interim_message_fails(self, make_adapter, bot):
        """Сбой промежуточного сообщения не отменяет доставку ответа."""

        async def flaky_send(chat_id, text):
            if text == STILL_WORKING:
                raise NetworkError("flaky")

        bot.send_message.side_effect = flaky_send
        llm = FakeLLMClient(reply="late answer", chunk_delay=0.1)
        adapter = make_adapter(llm, reply_deadline=0.02)

        await adapter.process_webhook(make_update("Hard question"))
        await adapter.stop()

        assert sent_texts(bot) == [STILL_WORKING, "late answer"]
        assert len(llm.calls) == 1

    @pytest.mark.asyncio
    async def test_configure_webhook(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.configure_webhook("https://bro.test/telegram-webhook", "https://bro.test")

        bot.set_webhook.assert_awaited_once_with(url="https://bro.test/telegram-webhook")
        menu_button = bot.set_chat_menu_button.call_args.kwargs["menu_button"]
        assert menu_button.web_app.url == "https://bro.test"

    @pytest.mark.asyncio
    async def test_remove_webhook(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.remove_webhook()

        bot.delete_webhook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ignores_updates_without_text(self, make_adapter, bot):
        adapter = make_adapter()

        await adapter.process_webhook({"update_id": 5})

        bot.send_message.assert_not_called()
