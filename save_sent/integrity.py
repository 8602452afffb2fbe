"""Single-use tokens binding the duplicate marker to a message fingerprint.

A token moves through ``issued -> consumed`` when a duplicate loops back and
verifies, or ``issued -> expired`` when nothing claims it within the TTL.
The token store is the only shared state, so verification works across
process and connection boundaries.
"""

from __future__ import annotations

import logging

from .config import Settings
from .errors import DuplicateLoopError
from .message import MailMessage
from .models import IssuedDuplicate, MessageSnapshot, Verdict, VerificationResult
from .shape import fingerprint
from .token_store import TokenStore
from .utils import bare_address, new_token

logger = logging.getLogger(__name__)


class IntegrityEngine:
    """Issue tokens for outbound duplicates and verify them on the way back in."""

    def __init__(self, settings: Settings, store: TokenStore) -> None:
        self.settings = settings
        self.store = store

    def is_duplicate(self, message: MailMessage) -> bool:
        """True when the marker header is present, whatever its value."""
        return message.count(self.settings.flag_name) > 0

    def snapshot(self, message: MailMessage) -> MessageSnapshot:
        """Capture the original before the message object goes away."""
        if self.is_duplicate(message):
            raise DuplicateLoopError(
                f"Refusing to duplicate a message carrying {self.settings.flag_name}"
            )
        return MessageSnapshot(
            header_lines=message.lines(),
            fingerprint=fingerprint(message),
            sender=bare_address(message.get("From")),
            body=message.body,
            linesep=message.linesep,
        )

    async def issue(self, message: MailMessage) -> IssuedDuplicate:
        return await self.issue_snapshot(self.snapshot(message))

    async def issue_snapshot(self, snapshot: MessageSnapshot) -> IssuedDuplicate:
        """Store ``token -> fingerprint`` and build the marked duplicate."""
        token = new_token()
        await self.store.set(
            self.settings.store_key(token), snapshot.fingerprint, self.settings.token_ttl
        )

        header_lines = list(snapshot.header_lines)
        header_lines.append(f"{self.settings.flag_name}: {self.settings.flag_value}")
        header_lines.append(f"{self.settings.token_header}: {token}")
        text = snapshot.linesep.join(header_lines) + snapshot.linesep * 2 + snapshot.body

        return IssuedDuplicate(
            token=token,
            fingerprint=snapshot.fingerprint,
            mail_from=snapshot.sender,
            rcpt_to=snapshot.sender,
            text=text,
        )

    async def verify(self, message: MailMessage) -> VerificationResult:
        """Check and consume the security token; the token header is always stripped."""
        values = message.get_all(self.settings.token_header)
        if not values:
            return VerificationResult(False, "no security token")

        # Several token headers collapse into one string that matches no record.
        token = "\n".join(values)
        message.remove_header(self.settings.token_header)

        key = self.settings.store_key(token)
        stored = await self.store.get(key)
        if stored is None:
            logger.info("Security token is unknown, expired or already used")
            return VerificationResult(False, "unknown token")

        if stored != fingerprint(message):
            logger.warning(
                "Verification of security token failed. This could be a plugin bug "
                "(most likely) or a malicious attempt."
            )
            return VerificationResult(False, "fingerprint mismatch")

        if not await self.store.delete(key):
            # Another verifier (or expiry) removed the record between GET and DEL.
            logger.warning("Security token was consumed concurrently; treating as unverified")
            return VerificationResult(False, "token already consumed")

        return VerificationResult(True, "verified")

    def check_policy(self, message: MailMessage, result: VerificationResult) -> Verdict:
        """Decide whether a marked message may proceed."""
        flag_name = self.settings.flag_name
        occurrences = message.get_all(flag_name)
        if not occurrences:
            return Verdict.proceed()

        if not result.verified:
            logger.warning(
                "Disallowed header item %s (%s). This could be a plugin bug "
                "(most likely) or a malicious attempt.",
                flag_name,
                result.reason,
            )
            return Verdict.deny()

        if len(occurrences) != 1:
            logger.critical(
                "Header item %s should not appear more than once: %s", flag_name, occurrences
            )
            return Verdict.internal_error()

        return Verdict.proceed()
