"""Utility helpers shared across modules."""

from __future__ import annotations

import re
import secrets
from email.utils import parseaddr

TOKEN_BYTES = 32

_FOLD = re.compile(r"\r?\n(?=[ \t])")


def new_token() -> str:
    """Return 256 bits of randomness as a hex string."""
    return secrets.token_hex(TOKEN_BYTES)


def unfold(value: str) -> str:
    """Undo RFC 5322 header folding and trim surrounding whitespace."""
    return _FOLD.sub("", value).strip()


def bare_address(header_value: str) -> str:
    """Extract the addr-spec from a From/To style header value."""
    return parseaddr(header_value or "")[1]
