from typing import List

TELEGRAM_MESSAGE_LIMIT = 4096


def split_message(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> List[str]:
    """
    Split a reply into chunks Telegram accepts.

    Every chunk is at most `limit` characters and the chunks concatenate back
    to exactly `text`. A chunk ends right after the last newline in the second
    half of its window when there is one; otherwise it is cut at `limit`.
    Slicing works on code points, so a multi-byte character is never split.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    if not text:
        return []

    chunks: List[str] = []
    start = 0
    while len(text) - start > limit:
        end = start + limit
        newline = text.rfind("\n", start + limit // 2, end)
        cut = newline + 1 if newline != -1 else end
        chunks.append(text[start:cut])
        start = cut
    chunks.append(text[start:])
    return chunks
