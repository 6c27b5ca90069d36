"""
Авторизация админ-панели: проверка Telegram Login Widget и HS256 JWT.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from jose import JWTError, jwt

from cbo_bro.core.errors import AdminAuthError
from cbo_bro.models.session import utc_now

logger = logging.getLogger("cbo-bro.admin.auth")


class AdminAuthService:
    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        expire_hours: int = 24,
        bot_token: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._expire = timedelta(hours=expire_hours)
        self._bot_token = bot_token
        self._clock = clock

    def create_token(self, user_id: int, username: Optional[str] = None, first_name: Optional[str] = None) -> str:
        claims = {
            "userId": user_id,
            "username": username,
            "first_name": first_name,
            "exp": self._clock() + self._expire,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Проверить подпись и срок действия токена.

        Raises:
            AdminAuthError: Токен невалиден или истек
        """
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.warning(f"Admin token rejected: {e}")
            raise AdminAuthError("Invalid token") from e
        if "userId" not in payload:
            raise AdminAuthError("Invalid token")
        return payload

    def verify_telegram_auth(self, auth_data: Mapping[str, Any]) -> bool:
        """
        Проверить hash данных Telegram Login Widget.

        Ключ HMAC - sha256 от токена бота, подписывается строка
        "key=value" по всем полям кроме hash, отсортированным по ключу.
        """
        received = auth_data.get("hash")
        if not self._bot_token or not received:
            return False
        secret = hashlib.sha256(self._bot_token.encode()).digest()
        check_string = "\n".join(
            f"{key}={auth_data[key]}"
            for key in sorted(auth_data)
            if key != "hash" and auth_data[key] is not None
        )
        expected = hmac.new(secret, check_string.encode(), hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, str(received))
