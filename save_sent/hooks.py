"""Hook handlers wiring the integrity engine into a mail pipeline.

``security_inspection`` runs once all message data has been received;
``duplicate_to_sender`` runs after the message was queued successfully.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .config import Settings
from .errors import DeliveryError, StoreUnavailableError
from .integrity import IntegrityEngine
from .message import MailMessage
from .models import MessageSnapshot, Verdict
from .outbound import OutboundSender, build_sender
from .token_store import TokenStore, build_token_store

logger = logging.getLogger(__name__)


class SaveSentPlugin:
    """Duplicate outbound mail to its sender and police the duplicate marker."""

    def __init__(self, settings: Settings, store: TokenStore, sender: OutboundSender) -> None:
        self.settings = settings
        self.store = store
        self.sender = sender
        self.engine = IntegrityEngine(settings, store)
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SaveSentPlugin":
        return cls(settings, build_token_store(settings), build_sender(settings))

    async def security_inspection(self, message: MailMessage) -> Verdict:
        """Verify the security token, strip it, then apply the marker policy."""
        try:
            await self.store.ping()
            result = await self.engine.verify(message)
        except StoreUnavailableError as exc:
            logger.critical("Token store not available: %s", exc)
            return Verdict.internal_error()
        return self.engine.check_policy(message, result)

    async def duplicate_to_sender(self, message: MailMessage) -> Verdict:
        """Schedule a marked copy back to the sender without waiting for delivery."""
        try:
            await self.store.ping()
        except StoreUnavailableError as exc:
            logger.critical("Token store not available: %s", exc)
            return Verdict.internal_error()

        if self.engine.is_duplicate(message):
            logger.debug("Will not duplicate to sender a mail that is already a duplicate.")
            return Verdict.proceed()

        snapshot = self.engine.snapshot(message)
        if not snapshot.sender:
            logger.warning("No usable From address; not duplicating message")
            return Verdict.proceed()

        task = asyncio.create_task(self._send_duplicate(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return Verdict.proceed()

    async def _send_duplicate(self, snapshot: MessageSnapshot) -> Optional[str]:
        try:
            duplicate = await self.engine.issue_snapshot(snapshot)
        except StoreUnavailableError as exc:
            logger.critical("Could not register duplicate token: %s", exc)
            return None

        try:
            await self.sender.send(duplicate.mail_from, duplicate.rcpt_to, duplicate.text)
        except DeliveryError as exc:
            logger.warning("Duplicate to %s was not queued: %s", duplicate.rcpt_to, exc)
            return None

        logger.info("Queued duplicate of outbound mail to %s", duplicate.rcpt_to)
        return duplicate.token

    async def drain(self) -> None:
        """Wait for scheduled duplicates, e.g. before a short-lived process exits."""
        if self._pending:
            await asyncio.gather(*self._pending)

    async def close(self) -> None:
        await self.drain()
        await self.store.close()
