from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import replace
from typing import Optional

from loguru import logger

from oracle_engine.config import OracleSettings
from oracle_engine.orchestrator import ConversationOrchestrator, default_orchestrator


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run and inspect the oracle token debate")
    p.add_argument("--db-path", type=str, default=None, help="SQLite path (defaults to $ORACLE_DB_PATH; unset keeps state in memory)")
    p.add_argument("--session-id", type=str, default=None, help="Session id (defaults to $ORACLE_SESSION_ID or oracle-session-<year>)")
    p.add_argument("--log-level", type=str, default="INFO", help="Log level for stdout")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Generate messages until interrupted")
    run.add_argument("--interval", type=float, default=None, help="Seconds between messages (default: $ORACLE_MESSAGE_INTERVAL or 8)")
    run.add_argument("--max-ticks", type=int, default=None, help="Stop after this many ticks instead of running forever")

    sub.add_parser("status", help="Print session status as JSON")

    msgs = sub.add_parser("messages", help="Print recent messages, newest first")
    msgs.add_argument("--limit", type=int, default=20)

    topic = sub.add_parser("topic", help="Set the current discussion topic")
    topic.add_argument("topic", type=str)

    clear = sub.add_parser("clear", help="Delete all messages and reset the session")
    clear.add_argument("--yes", action="store_true", help="Do not prompt for confirmation")
    return p.parse_args(argv)


def build_orchestrator(args: argparse.Namespace) -> ConversationOrchestrator:
    overrides = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.session_id:
        overrides["session_id"] = args.session_id
    if getattr(args, "interval", None):
        overrides["message_interval"] = args.interval
    if not overrides:
        return default_orchestrator()
    return ConversationOrchestrator.create(replace(OracleSettings.from_env(), **overrides))


async def run_forever(orchestrator: ConversationOrchestrator, max_ticks: Optional[int]) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    if max_ticks is None:
        await orchestrator.start()
        await stop.wait()
        await orchestrator.stop()
        return

    # Bounded run: tick inline without the background timer
    await orchestrator.feed.start()
    orchestrator.initialize_session()
    try:
        for _ in range(max_ticks):
            await orchestrator.tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=orchestrator.interval)
                break
            except asyncio.TimeoutError:
                pass
    finally:
        await orchestrator.feed.stop()


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logger.remove()
    logger.add(sys.stdout, level=args.log_level.upper(), colorize=True, format="{time:HH:mm:ss} | {level} | {message}")

    orchestrator = build_orchestrator(args)

    if args.command == "run":
        asyncio.run(run_forever(orchestrator, args.max_ticks))
    elif args.command == "status":
        print(json.dumps(orchestrator.status(), ensure_ascii=False, indent=2))
    elif args.command == "messages":
        rows = [m.to_dict() for m in orchestrator.get_messages(args.limit)]
        print(json.dumps(rows, ensure_ascii=False, indent=2))
    elif args.command == "topic":
        if orchestrator.set_topic(args.topic) is None:
            logger.error("No session found; run the oracle once before setting a topic")
            return 1
    elif args.command == "clear":
        if not args.yes:
            answer = input(f'Delete all messages for {orchestrator.session_id}? Type "YES" to confirm: ')
            if answer != "YES":
                logger.info("Clear cancelled")
                return 1
        return 0 if orchestrator.clear_messages() else 1
    return 0


def cli_main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli_main()
