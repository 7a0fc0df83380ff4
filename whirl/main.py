"""Whirl client entry point.

Sets up logging from ``whirl.settings.yaml`` and runs a small terminal
front-end for random chat. Every typed line is sent to the current partner;
a few slash commands map to the other intents:

    /join    enter the queue again
    /leave   leave the queue or the current match
    /friend  send a friend request to the current partner
    /quit    close the session and exit

Usage:
    WHIRL_TOKEN=<jwt> python -m whirl [--settings whirl.settings.yaml]
"""
import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Set

from whirl.config import WhirlConfig, load_config
from whirl.random_chat.schemas import ChatEvent, RandomState
from whirl.session import SessionContext

logger = logging.getLogger(__name__)

TRANSCRIPT_POLL_SECONDS = 0.2


def configure_logging(config: WhirlConfig) -> None:
    """Configure the root logger and silence chatty third-party loggers."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # httpx/httpcore log every TCP connection; websockets logs every frame at DEBUG.
    for _noisy in ("httpx", "httpcore", "websockets", "duckdb"):
        logging.getLogger(_noisy).setLevel(logging.WARNING)

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())


def transcript_line(event: ChatEvent, partner_name: str, now: Optional[datetime] = None) -> str:
    """One printed transcript row: time, speaker, text."""
    speaker = "*" if event.system else ("you" if event.fromSelf else partner_name)
    return f"{event.display_time(now)} [{speaker}] {event.content}"


async def _echo_transcript(session: SessionContext, stop: asyncio.Event) -> None:
    """Print transcript events as they appear."""
    shown: Set[str] = set()
    status = ""
    while not stop.is_set():
        coordinator = session.random_chat
        for event in coordinator.events:
            if event.id in shown:
                continue
            shown.add(event.id)
            print(transcript_line(event, coordinator.partner.name))
        if coordinator.status_text != status:
            status = coordinator.status_text
            print(f"-- {status}")
        if session.logout_reason:
            print(f"-- {session.logout_reason}")
            stop.set()
            return
        await asyncio.sleep(TRANSCRIPT_POLL_SECONDS)


async def run_random_chat(session: SessionContext) -> int:
    """Interactive random chat on stdin/stdout. Returns a process exit code."""
    if not await session.start():
        print(session.connection.status)
        return 1

    stop = asyncio.Event()
    echo_task = asyncio.ensure_future(_echo_transcript(session, stop))
    await session.random_chat.join_queue()

    loop = asyncio.get_running_loop()
    try:
        while not stop.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            command = line.strip()
            if command == "/quit":
                break
            elif command == "/join":
                await session.random_chat.join_queue()
            elif command == "/leave":
                await session.random_chat.leave()
            elif command == "/friend":
                if not await session.random_chat.request_friend():
                    print("-- Friend request not available right now.")
            elif command:
                await session.random_chat.send_message(command)
    finally:
        stop.set()
        await echo_task
        if session.random_chat.state != RandomState.IDLE:
            await session.random_chat.leave()
    return 0 if session.logout_reason is None else 2


async def _amain(settings_path: Optional[Path], token: Optional[str]) -> int:
    config = load_config(settings_path)
    configure_logging(config)
    async with SessionContext(config) as session:
        if token:
            session.auth.authenticate(token)
        return await run_random_chat(session)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="whirl", description="Whirl random chat client")
    parser.add_argument("--settings", type=Path, default=None, help="Path to whirl.settings.yaml")
    parser.add_argument(
        "--token",
        default=os.environ.get("WHIRL_TOKEN"),
        help="JWT from /auth/login (defaults to $WHIRL_TOKEN or the stored token)",
    )
    args = parser.parse_args(argv)
    try:
        return asyncio.run(_amain(args.settings, args.token))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
