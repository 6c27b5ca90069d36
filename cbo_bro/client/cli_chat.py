# cbo_bro/client/cli_chat.py
import asyncio
import os
import sys

from cbo_bro.client.relay_bridge import ConnectionState, RelayBridge, StreamUpdate

GATEWAY_WS = os.environ.get("CBO_BRO__GATEWAY_WS", "ws://localhost:8082/ws")
MODE_PREFIX = "/mode "


def on_stream(update: StreamUpdate):
    print(update.delta, end="", flush=True)


def on_message(msg: dict):
    """
    Печатает служебные конверты сервера; чанки печатает on_stream.
    """
    msg_type = msg.get("type")
    if msg_type == "connection.established":
        print(f"[session {msg.get('sessionId')}]")
    elif msg_type == "session.restored":
        print(f"[restored {len(msg.get('messages', []))} messages]")
    elif msg_type == "stream.start":
        print("Bro: ", end="", flush=True)
    elif msg_type == "stream.end":
        print()
        print("═════════════════════════════════════")
        print("You: ", end="", flush=True)
    elif msg_type == "stream.error":
        print(f"\n[Error]: {msg.get('error')}")
        print("You: ", end="", flush=True)
    elif msg_type == "mode.changed":
        print(f"[{msg.get('message')}]")
    elif msg_type in ("tool.use", "tool.result", "tool.error"):
        print(f"[{msg_type}] {msg.get('tool')}: {msg.get('result') or msg.get('error') or msg.get('status')}")
    elif msg_type == "error":
        print(f"\n[Error]: {msg.get('error')}")


def on_state_change(state: ConnectionState):
    if state in (ConnectionState.RECONNECTING, ConnectionState.FAILED):
        print(f"\n[connection {state.value}]")


async def stdin_reader(queue):
    """
    Асинхронно читает пользовательский ввод и кладёт его в очередь.
    """
    loop = asyncio.get_running_loop()
    while True:
        user_input = await loop.run_in_executor(None, sys.stdin.readline)
        if not user_input:
            await queue.put("exit")
            break
        await queue.put(user_input.strip())


def to_envelope(user_input: str) -> dict:
    if user_input.startswith(MODE_PREFIX):
        return {"type": "mode", "mode": user_input[len(MODE_PREFIX):].strip()}
    return {"type": "chat", "content": user_input}


async def main():
    queue = asyncio.Queue()
    bridge = RelayBridge(
        GATEWAY_WS,
        on_message=on_message,
        on_stream=on_stream,
        on_state_change=on_state_change,
    )
    print("🚀 CBO-Bro CLI. Type 'exit' to quit, '/mode <name>' to switch mode")
    print("You: ", end="", flush=True)
    bridge.connect()
    reader = asyncio.create_task(stdin_reader(queue))
    try:
        while True:
            user_input = await queue.get()
            if user_input.lower() in ("exit", "quit"):
                print("👋 Bye!")
                break
            if not user_input:
                continue
            await bridge.send(to_envelope(user_input))
    finally:
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)
        await bridge.close()


def run():
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        print("\n👋 Bye (exit on Ctrl+C)!")


if __name__ == "__main__":
    run()
