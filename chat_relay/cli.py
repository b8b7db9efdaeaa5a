"""命令行入口。

    chat-relay serve [--host H] [--port P]   使用 uvicorn 启动 relay
    chat-relay chat [--url URL] [--blocking] 在终端中与 relay 交互聊天
    chat-relay check                          检查哪些配置项已设置
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

import uvicorn

from chat_relay.client.session import ChatSession, SessionEvent
from chat_relay.config.settings import settings
from chat_relay.infrastructure.storage.json_store import JsonHistoryStore


def _print_event(event: SessionEvent) -> None:
    if event.kind == "delta" and event.delta_text:
        print(event.delta_text, end="", flush=True)
    elif event.kind == "final":
        print(flush=True)
    elif event.kind == "error" and event.error is not None:
        print(f"\n[error] {event.error.message} ({event.error.code})", file=sys.stderr, flush=True)
    elif event.kind == "cancelled":
        print("\n[cancelled]", flush=True)


async def _chat_loop(url: Optional[str], blocking: bool, session_id: Optional[str]) -> None:
    history = JsonHistoryStore() if session_id else None
    session = ChatSession(settings, relay_url=url, listener=_print_event, history=history, session_id=session_id)
    for record in session.messages:
        print(f"{record.role}> {record.content}")
    mode = "blocking" if blocking else "streaming"
    while True:
        try:
            query = await asyncio.to_thread(input, "you> ")
        except EOFError:
            break
        query = query.strip()
        if not query:
            continue
        if query in {"/quit", "/exit"}:
            break
        if query == "/reset":
            session.reset()
            print("[conversation cleared]")
            continue
        print("bot> ", end="", flush=True)
        await session.send(query, response_mode=mode)


def _check() -> int:
    rows = [
        ("DIFY_API_KEY", "set" if settings.dify_api_key else "missing"),
        ("DIFY_BASE_URL", settings.dify_base_url),
        ("DIFY_PUBLIC_ACCESS", str(settings.public_access).lower()),
        ("DEMO_MODE", str(settings.demo_mode).lower()),
        ("ENABLE_FALLBACK", str(settings.enable_fallback).lower()),
        ("STREAM_IDLE_TIMEOUT", f"{settings.stream_idle_timeout:g}s"),
        ("RELAY_URL", settings.relay_url),
    ]
    width = max(len(name) for name, _ in rows)
    for name, value in rows:
        print(f"{name.ljust(width)}  {value}")
    if not settings.dify_api_key and not settings.demo_mode:
        print("\nNo API key configured and demo mode is off: the relay will answer 500.", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="chat-relay", description="Streaming chat relay")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the relay HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    chat = sub.add_parser("chat", help="Chat with a running relay from the terminal")
    chat.add_argument("--url", default=None, help="Relay URL (default: RELAY_URL setting)")
    chat.add_argument("--blocking", action="store_true", help="Wait for complete answers instead of streaming")
    chat.add_argument("--session", default=None, help="Persist the transcript under this session id")

    sub.add_parser("check", help="Report which settings are configured")

    args = parser.parse_args(argv)
    if args.command == "serve":
        uvicorn.run("chat_relay.api.app:app", host=args.host, port=args.port)
        return 0
    if args.command == "chat":
        try:
            asyncio.run(_chat_loop(args.url, args.blocking, args.session))
        except KeyboardInterrupt:
            print()
        return 0
    return _check()


if __name__ == "__main__":
    sys.exit(main())
