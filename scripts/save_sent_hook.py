"""Pipe-filter entry point running the save-sent hooks on one message from stdin."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
import sys
from typing import BinaryIO, TextIO

from dotenv import load_dotenv
from pydantic import ValidationError

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from save_sent.config import Settings
from save_sent.errors import StoreUnavailableError
from save_sent.hooks import SaveSentPlugin
from save_sent.message import MailMessage
from save_sent.models import INTERNAL_ERROR_REPLY, Disposition

load_dotenv()

# sysexits.h codes understood by Postfix/Exim pipe transports.
EX_SOFTWARE = 70
EX_NOPERM = 77

EXIT_CODES = {
    Disposition.CONTINUE: 0,
    Disposition.DENY: EX_NOPERM,
    Disposition.DENY_INTERNAL: EX_SOFTWARE,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run save-sent mail hooks on a message read from stdin.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser(
        "inspect",
        help="Verify the duplicate marker and write the message (token header stripped) to stdout",
    )
    sub.add_parser("duplicate", help="Send a marked copy of an outbound message back to its sender")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        stream=sys.stderr,
    )


async def run(
    command: str,
    raw: bytes,
    plugin: SaveSentPlugin,
    stdout: BinaryIO,
    stderr: TextIO,
) -> int:
    message = MailMessage.from_bytes(raw)
    try:
        if command == "inspect":
            verdict = await plugin.security_inspection(message)
            if verdict.allowed:
                stdout.write(message.as_bytes())
        else:
            verdict = await plugin.duplicate_to_sender(message)
    finally:
        await plugin.close()

    if verdict.reply:
        print(verdict.reply, file=stderr)
    return EXIT_CODES[verdict.disposition]


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as exc:
        configure_logging("INFO")
        logging.critical("Invalid configuration: %s", exc)
        print(INTERNAL_ERROR_REPLY, file=sys.stderr)
        return EX_SOFTWARE
    configure_logging(settings.log_level)

    raw = sys.stdin.buffer.read()
    if not raw:
        logging.error("No message data on stdin.")
        return EX_SOFTWARE

    try:
        plugin = SaveSentPlugin.from_settings(settings)
    except StoreUnavailableError as exc:
        logging.critical("Token store not available: %s", exc)
        print(INTERNAL_ERROR_REPLY, file=sys.stderr)
        return EX_SOFTWARE

    code = asyncio.run(run(args.command, raw, plugin, sys.stdout.buffer, sys.stderr))
    sys.stdout.flush()
    return code


if __name__ == "__main__":
    sys.exit(main())
