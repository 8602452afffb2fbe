"""Shared fixtures: settings, a controllable clock, and message builders."""

import pytest

from save_sent.config import Settings
from save_sent.integrity import IntegrityEngine
from save_sent.message import MailMessage
from save_sent.token_store import MemoryTokenStore


class FakeClock:
    """Manually advanced time source for expiry tests."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSender:
    """Outbound sender that keeps what it was given instead of delivering."""

    def __init__(self, error: Exception | None = None):
        self.sent: list[tuple[str, str, str]] = []
        self.error = error

    async def send(self, mail_from: str, rcpt_to: str, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((mail_from, rcpt_to, text))


def build_raw(headers, body="Hello there.\r\n", linesep="\r\n") -> bytes:
    lines = [f"{name}: {value}" for name, value in headers]
    return (linesep.join(lines) + linesep + linesep + body).encode("utf-8")


DEFAULT_HEADERS = [
    ("Received", "from client.example (client.example [192.0.2.1])"),
    ("From", "Alice <a@x.com>"),
    ("To", "b@y.com"),
    ("Subject", "Hi"),
    ("Date", "Mon, 19 Oct 2026 10:00:00 +0000"),
    ("Message-ID", "<1@x.com>"),
]


@pytest.fixture
def settings():
    return Settings(_env_file=None, STORE_BACKEND="memory")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryTokenStore(clock=clock)


@pytest.fixture
def engine(settings, store):
    return IntegrityEngine(settings, store)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def outbound_message():
    return MailMessage.from_bytes(build_raw(DEFAULT_HEADERS))
