"""Typed containers shared across the pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

INTERNAL_ERROR_REPLY = "Internal server error"


class Disposition(str, Enum):
    """What the host pipeline should do with the message after a hook ran."""

    CONTINUE = "continue"
    DENY = "deny"
    DENY_INTERNAL = "deny_internal"


@dataclass(frozen=True)
class Verdict:
    """Hook outcome plus the reply text shown to the remote party (if any)."""

    disposition: Disposition
    reply: Optional[str] = None

    @classmethod
    def proceed(cls) -> "Verdict":
        return cls(Disposition.CONTINUE)

    @classmethod
    def deny(cls) -> "Verdict":
        return cls(Disposition.DENY)

    @classmethod
    def internal_error(cls) -> "Verdict":
        return cls(Disposition.DENY_INTERNAL, INTERNAL_ERROR_REPLY)

    @property
    def allowed(self) -> bool:
        return self.disposition is Disposition.CONTINUE


@dataclass(frozen=True)
class VerificationResult:
    """Whether the security token on an inbound message checked out."""

    verified: bool
    reason: str = ""


@dataclass(frozen=True)
class MessageSnapshot:
    """Everything needed to build a duplicate, captured before any await."""

    header_lines: list[str]
    fingerprint: str
    sender: str
    body: str
    linesep: str = "\r\n"


@dataclass(frozen=True)
class IssuedDuplicate:
    """A duplicate ready for outbound delivery."""

    token: str
    fingerprint: str
    mail_from: str
    rcpt_to: str
    text: str
