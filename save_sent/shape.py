"""Order-independent fingerprint of a message's identity headers."""

from __future__ import annotations

import json
from typing import Mapping, Protocol

# Headers that relays are not expected to rewrite between submission and loopback.
STABLE_HEADERS = ("From", "To", "Cc", "Subject", "Date")


class HeaderSource(Protocol):
    def get(self, name: str) -> str: ...


def extract_stable_headers(message: HeaderSource) -> dict[str, str]:
    """Map each stable header to its value, ``""`` when missing."""
    return {name: message.get(name) or "" for name in STABLE_HEADERS}


def canonical_string(fields: Mapping[str, str]) -> str:
    """Compact JSON of the key-sorted ``[key, value]`` pairs."""
    pairs = sorted(fields.items())
    return json.dumps(pairs, separators=(",", ":"), ensure_ascii=False)


def fingerprint(message: HeaderSource) -> str:
    """Canonical string of the stable headers, equal for messages that agree on them."""
    return canonical_string(extract_stable_headers(message))
