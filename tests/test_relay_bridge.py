"""
Unit тесты для RelayBridge.
"""

import asyncio
import json

import pytest

from cbo_bro.client import relay_bridge
from cbo_bro.client.relay_bridge import ConnectionState, RelayBridge, compute_backoff


class FakeClientSocket:
    """Клиентская сторона websockets: сервер подает кадры через push()"""

    def __init__(self):
        self.sent = []
        self.incoming = asyncio.Queue()
        self.close_code = None

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=""):
        if self.close_code is None:
            self.close_code = code
            self.incoming.put_nowait(None)

    def push(self, data):
        self.incoming.put_nowait(json.dumps(data))

    def server_close(self, code):
        self.close_code = code
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.urls = []
        self.sockets = []

    async def __call__(self, url):
        self.urls.append(url)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise OSError("Connection refused")
        socket = FakeClientSocket()
        self.sockets.append(socket)
        return socket


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def make_bridge(connector):
    bridges = []

    def _make(**kwargs):
        kwargs.setdefault("connector", connector)
        kwargs.setdefault("base_delay", 0.01)
        bridge = RelayBridge("ws://gateway.test/ws", **kwargs)
        bridges.append(bridge)
        return bridge

    return _make


def test_compute_backoff():
    assert [compute_backoff(n) for n in range(7)] == [1, 2, 4, 8, 16, 30, 30]
    assert compute_backoff(3, base=0.5, cap=2.0) == 2.0


@pytest.mark.asyncio
async def test_queued_messages_flushed_in_order(make_bridge, connector, wait_until):
    """Конверты, отправленные до открытия, уходят по порядку ровно один раз."""
    bridge = make_bridge()

    for i in range(3):
        assert await bridge.send({"type": "chat", "content": f"m{i}"}) is False
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)
    assert await bridge.send({"type": "chat", "content": "m3"}) is True

    assert [m["content"] for m in connector.sockets[0].sent] == ["m0", "m1", "m2", "m3"]
    assert bridge.queued == 0
    await bridge.close()


@pytest.mark.asyncio
async def test_queue_overflow_drops_oldest(make_bridge, connector, wait_until):
    bridge = make_bridge(queue_size=2)

    for i in range(3):
        await bridge.send({"type": "chat", "content": f"m{i}"})
    assert bridge.queued == 2
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)

    assert [m["content"] for m in connector.sockets[0].sent] == ["m1", "m2"]
    await bridge.close()


@pytest.mark.asyncio
async def test_reconnects_with_session_id(make_bridge, connector, wait_until):
    states = []
    bridge = make_bridge(on_state_change=states.append)
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)

    connector.sockets[0].push({"type": "connection.established", "sessionId": "abc", "connectionId": "c1"})
    await wait_until(lambda: bridge.session_id == "abc")
    connector.sockets[0].server_close(1006)
    await wait_until(lambda: len(connector.sockets) == 2 and bridge.state is ConnectionState.CONNECTED)

    assert connector.urls[0] == "ws://gateway.test/ws"
    assert connector.urls[1] == "ws://gateway.test/ws?sessionId=abc"
    assert ConnectionState.RECONNECTING in states
    assert bridge.failures == 0
    await bridge.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [1000, 1001])
async def test_clean_close_does_not_reconnect(make_bridge, connector, wait_until, code):
    bridge = make_bridge()
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)

    connector.sockets[0].server_close(code)
    await asyncio.wait_for(bridge.wait_closed(), timeout=1.0)

    assert bridge.state is ConnectionState.DISCONNECTED
    assert len(connector.urls) == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(make_bridge, wait_until):
    connector = FakeConnector(fail_times=100)
    bridge = make_bridge(connector=connector, base_delay=0.001, max_attempts=3)
    bridge.connect()

    await asyncio.wait_for(bridge.wait_closed(), timeout=2.0)

    assert bridge.state is ConnectionState.FAILED
    assert len(connector.urls) == 4


@pytest.mark.asyncio
async def test_send_restarts_after_failure(make_bridge, wait_until):
    connector = FakeConnector(fail_times=2)
    bridge = make_bridge(connector=connector, base_delay=0.001, max_attempts=1)
    bridge.connect()
    await asyncio.wait_for(bridge.wait_closed(), timeout=1.0)
    assert bridge.state is ConnectionState.FAILED

    await bridge.send({"type": "chat", "content": "retry me"})
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)

    assert connector.sockets[0].sent == [{"type": "chat", "content": "retry me"}]
    await bridge.close()


@pytest.mark.asyncio
async def test_stream_reassembly(make_bridge, connector, wait_until):
    updates, messages = [], []
    bridge = make_bridge(on_stream=updates.append, on_message=messages.append)
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)
    socket = connector.sockets[0]

    socket.push({"type": "stream.start", "messageId": "m1", "mode": "analyze"})
    socket.push({"type": "stream.chunk", "messageId": "m1", "content": "Hel"})
    socket.push({"type": "stream.chunk", "messageId": "m1", "content": "lo"})
    socket.push({"type": "stream.end", "messageId": "m1", "message": "Hello"})
    await wait_until(lambda: any(m["type"] == "stream.end" for m in messages))

    assert [(u.message_id, u.delta, u.content) for u in updates] == [("m1", "Hel", "Hel"), ("m1", "lo", "Hello")]
    assert [m["type"] for m in messages] == ["stream.start", "stream.chunk", "stream.chunk", "stream.end"]
    await bridge.close()


@pytest.mark.asyncio
async def test_async_callbacks_and_server_ping(make_bridge, connector, wait_until):
    received = []

    async def on_message(message):
        received.append(message)

    bridge = make_bridge(on_message=on_message)
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)
    socket = connector.sockets[0]

    socket.push({"type": "ping", "timestamp": "2024-01-01T00:00:00Z"})
    socket.push({"type": "mode.changed", "mode": "create", "message": "Switched to create mode"})
    await wait_until(lambda: len(received) == 1)

    assert socket.sent == [{"type": "pong"}]
    assert received[0]["mode"] == "create"
    await bridge.close()


@pytest.mark.asyncio
async def test_heartbeat_timeout_forces_reconnect(make_bridge, connector, wait_until):
    bridge = make_bridge(heartbeat_interval=0.01, heartbeat_timeout=0.03)
    bridge.connect()

    await wait_until(lambda: len(connector.sockets) >= 2)

    first = connector.sockets[0]
    assert {"type": "ping"} in first.sent
    assert first.close_code == 4000
    await bridge.close()


@pytest.mark.asyncio
async def test_close_is_final(make_bridge, connector, wait_until):
    states = []
    bridge = make_bridge(on_state_change=states.append)
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)

    await bridge.close()
    await asyncio.sleep(0.05)

    assert connector.sockets[0].close_code == 1000
    assert bridge.state is ConnectionState.DISCONNECTED
    assert len(connector.urls) == 1
    assert states[:2] == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]


@pytest.mark.asyncio
async def test_backoff_schedule_and_reset_on_open(make_bridge, monkeypatch, wait_until):
    """Задержка после N неудач подряд равна min(base * 2**N, cap); open сбрасывает счетчик."""
    delays = []
    real_backoff = relay_bridge.compute_backoff

    def recording_backoff(failures, base, cap):
        delay = real_backoff(failures, base, cap)
        delays.append(delay)
        return delay

    monkeypatch.setattr(relay_bridge, "compute_backoff", recording_backoff)
    connector = FakeConnector(fail_times=3)
    bridge = make_bridge(connector=connector, base_delay=0.001, max_delay=1.0)
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)

    assert delays == pytest.approx([0.002, 0.004, 0.008])
    assert bridge.failures == 0

    connector.sockets[0].server_close(1006)
    await wait_until(lambda: len(connector.sockets) == 2 and bridge.state is ConnectionState.CONNECTED)

    assert delays == pytest.approx([0.002, 0.004, 0.008, 0.002])
    await bridge.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("callback", ["on_message", "on_stream", "on_state_change"])
async def test_failing_callback_does_not_stop_bridge(make_bridge, connector, wait_until, callback):
    calls = []

    def broken(*args):
        calls.append(args)
        raise ValueError("ui bug")

    bridge = make_bridge(**{callback: broken})
    bridge.connect()
    await wait_until(lambda: bridge.state is ConnectionState.CONNECTED)
    socket = connector.sockets[0]

    socket.push({"type": "stream.start", "messageId": "m1", "mode": "default"})
    socket.push({"type": "stream.chunk", "messageId": "m1", "content": "Hi"})
    socket.push({"type": "ping"})
    await wait_until(lambda: {"type": "pong"} in socket.sent)

    assert calls
    assert bridge.is_running()
    assert bridge.state is ConnectionState.CONNECTED
    assert socket.close_code is None
    assert await bridge.send({"type": "chat", "content": "still here"}) is True
    await bridge.close()
