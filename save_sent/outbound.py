"""Outbound transports that hand duplicates to the delivery queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import requests

from .config import Settings
from .errors import DeliveryError
from .message import ENCODING, ERRORS

logger = logging.getLogger(__name__)


class OutboundSender(Protocol):
    async def send(self, mail_from: str, rcpt_to: str, text: str) -> None: ...


class SendmailSender:
    """Re-inject a message through the local sendmail binary."""

    def __init__(self, settings: Settings) -> None:
        self.sendmail_path = str(settings.sendmail_path)

    async def send(self, mail_from: str, rcpt_to: str, text: str) -> None:
        cmd = [self.sendmail_path, "-i", "-f", mail_from, "--", rcpt_to]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await proc.communicate(text.encode(ENCODING, ERRORS))
        except OSError as exc:
            raise DeliveryError(f"Unable to run {self.sendmail_path}: {exc}") from exc
        if proc.returncode != 0:
            raise DeliveryError(
                f"sendmail failed for {rcpt_to} (exit {proc.returncode}): "
                f"{stderr.decode(errors='replace').strip()}"
            )
        logger.debug("sendmail accepted duplicate for %s", rcpt_to)


class HttpRelaySender:
    """Submit raw messages to an HTTP mail relay."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.session = requests.Session()
        self.url = settings.relay_endpoint

    async def send(self, mail_from: str, rcpt_to: str, text: str) -> None:
        await asyncio.to_thread(self._post, mail_from, rcpt_to, text)

    def _post(self, mail_from: str, rcpt_to: str, text: str) -> None:
        headers = {}
        if self.settings.relay_api_token:
            headers["Authorization"] = f"Token {self.settings.relay_api_token}"
        data = {"from": mail_from, "to": rcpt_to}
        files = {"message": ("message.eml", text.encode(ENCODING, ERRORS), "message/rfc822")}

        try:
            response = self.session.post(
                self.url,
                headers=headers,
                data=data,
                files=files,
                timeout=self.settings.relay_timeout,
            )
        except requests.RequestException as exc:
            raise DeliveryError(f"Relay request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.error("Relay submission failed (%s): %s", response.status_code, response.text)
            raise DeliveryError(f"Relay rejected duplicate with HTTP {response.status_code}")
        logger.debug("Relay accepted duplicate for %s", rcpt_to)


def build_sender(settings: Settings) -> OutboundSender:
    if settings.outbound_transport == "http":
        return HttpRelaySender(settings)
    return SendmailSender(settings)
