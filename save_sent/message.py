"""Raw RFC 5322 message wrapper with multi-value header access."""

from __future__ import annotations

import logging
import re
from typing import List, NamedTuple, Optional

from .utils import unfold

logger = logging.getLogger(__name__)

_HEADER_BODY_SEPARATOR = re.compile(r"\r?\n\r?\n")
_LINE_BREAK = re.compile(r"\r?\n")

# Raw bytes are decoded losslessly so the duplicate can reproduce the body byte for byte.
ENCODING = "utf-8"
ERRORS = "surrogateescape"


class HeaderField(NamedTuple):
    """One header as it appeared on the wire; ``name`` is None for unparseable lines."""

    name: Optional[str]
    value: str
    raw: str


class MailMessage:
    """Header lines kept in arrival order, plus the untouched body.

    Header names are matched case-insensitively. A name may occur several
    times; ``get_all`` returns every occurrence so callers can count them.
    Untouched header lines are written back exactly as read, using the line
    separator of the input.
    """

    def __init__(self, fields: List[HeaderField], body: str = "", linesep: str = "\r\n") -> None:
        self._fields = list(fields)
        self.body = body
        self.linesep = linesep

    @classmethod
    def from_bytes(cls, raw: bytes) -> "MailMessage":
        return cls.from_text(raw.decode(ENCODING, ERRORS))

    @classmethod
    def from_text(cls, text: str) -> "MailMessage":
        match = _HEADER_BODY_SEPARATOR.search(text)
        if match is None:
            header_block, body = text, ""
            linesep = "\n" if "\n" in text and "\r\n" not in text else "\r\n"
        else:
            header_block, body = text[: match.start()], text[match.end() :]
            linesep = "\r\n" if match.group().startswith("\r\n") else "\n"
        return cls(_parse_header_block(header_block, linesep), body, linesep)

    def get_all(self, name: str) -> list[str]:
        """Every value for ``name``, unfolded, in header order."""
        wanted = name.lower()
        return [
            unfold(field.value)
            for field in self._fields
            if field.name is not None and field.name.lower() == wanted
        ]

    def get(self, name: str) -> str:
        """All values for ``name`` joined by newlines, or ``""`` if absent."""
        return "\n".join(self.get_all(name))

    def count(self, name: str) -> int:
        return len(self.get_all(name))

    def add_header(self, name: str, value: str) -> None:
        self._fields.append(HeaderField(name, value, f"{name}: {value}"))

    def remove_header(self, name: str) -> int:
        """Drop every occurrence of ``name``; returns how many were removed."""
        wanted = name.lower()
        kept = [
            field
            for field in self._fields
            if field.name is None or field.name.lower() != wanted
        ]
        removed = len(self._fields) - len(kept)
        self._fields = kept
        return removed

    def lines(self) -> list[str]:
        """Header lines as they would be written out, folding preserved."""
        return [field.raw for field in self._fields]

    def as_text(self) -> str:
        return self.linesep.join(self.lines()) + self.linesep * 2 + self.body

    def as_bytes(self) -> bytes:
        return self.as_text().encode(ENCODING, ERRORS)


def _parse_header_block(block: str, linesep: str) -> List[HeaderField]:
    fields: List[HeaderField] = []
    if not block:
        return fields
    for line in _LINE_BREAK.split(block):
        previous = fields[-1] if fields else None
        if line[:1] in (" ", "\t") and previous is not None and previous.name is not None:
            fields[-1] = HeaderField(
                previous.name,
                f"{previous.value}{linesep}{line}",
                f"{previous.raw}{linesep}{line}",
            )
            continue
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            logger.debug("Keeping unparseable header line %r verbatim", line)
            fields.append(HeaderField(None, line, line))
            continue
        fields.append(HeaderField(key.strip(), value.lstrip(" \t"), line))
    return fields
