from .adapter import TelegramAdapter
from .splitter import TELEGRAM_MESSAGE_LIMIT, split_message

__all__ = ["TelegramAdapter", "TELEGRAM_MESSAGE_LIMIT", "split_message"]
