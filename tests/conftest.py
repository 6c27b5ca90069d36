"""
Pytest configuration and fixtures.
"""
import asyncio
import json

import pytest
from starlette.websockets import WebSocketDisconnect

from cbo_bro.services.config_service import ConfigService
from cbo_bro.services.llm import FakeLLMClient
from cbo_bro.services.session_store import SessionStore
from cbo_bro.services.whitelist_service import WhitelistService

ADMIN_ID = 111
USER_ID = 222
STRANGER_ID = 333


class FakeWebSocket:
    """Серверная сторона WebSocket: кадры клиента подаются через feed()"""

    def __init__(self, query_params=None):
        self.query_params = query_params or {}
        self.incoming = asyncio.Queue()
        self.sent = []
        self.accepted = False
        self.close_code = None

    async def accept(self):
        self.accepted = True

    async def receive_text(self):
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send_json(self, data):
        if self.close_code is not None:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(data)

    async def close(self, code=1000):
        self.close_code = code
        self.incoming.put_nowait(WebSocketDisconnect(code))

    def feed(self, data):
        self.incoming.put_nowait(json.dumps(data) if isinstance(data, dict) else data)

    def disconnect(self, code=1000):
        self.incoming.put_nowait(WebSocketDisconnect(code))

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, msg_type):
        return [m for m in self.sent if m["type"] == msg_type]


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def fake_ws():
    return FakeWebSocket


@pytest.fixture
def session_store():
    return SessionStore(timeout=3600, max_messages=100)


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def config_service(tmp_path):
    return ConfigService(tmp_path / "admin")


@pytest.fixture
def whitelist(tmp_path):
    service = WhitelistService(tmp_path / "whitelist.json")
    service.add_user(ADMIN_ID, username="boss", first_name="Boss")
    service.add_user(USER_ID, username="ann", first_name="Ann")
    service.add_admin(ADMIN_ID)
    return service
