"""Tests for the outbound transports (no real sendmail or HTTP calls)."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
import requests

from save_sent.config import Settings
from save_sent.errors import DeliveryError
from save_sent.outbound import HttpRelaySender, SendmailSender, build_sender

TEXT = "From: a@x.com\r\nX-Save-Sent-Duplicate: 1\r\n\r\nbody"


def _process(returncode=0, stderr=b""):
    proc = Mock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(b"", stderr))
    return proc


class TestSendmailSender:
    @pytest.fixture
    def sender(self):
        return SendmailSender(Settings(_env_file=None, SENDMAIL_PATH="/opt/sendmail"))

    async def test_pipes_message_to_sendmail(self, sender):
        proc = _process()
        with patch("save_sent.outbound.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            await sender.send("a@x.com", "a@x.com", TEXT)

        args = spawn.await_args.args
        assert args == ("/opt/sendmail", "-i", "-f", "a@x.com", "--", "a@x.com")
        proc.communicate.assert_awaited_once_with(TEXT.encode("utf-8"))

    async def test_nonzero_exit_raises(self, sender):
        proc = _process(returncode=75, stderr=b"queue file write error\n")
        with patch("save_sent.outbound.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(DeliveryError, match="exit 75.*queue file write error"):
                await sender.send("a@x.com", "a@x.com", TEXT)

    async def test_missing_binary_raises(self, sender):
        spawn = AsyncMock(side_effect=FileNotFoundError("/opt/sendmail"))
        with patch("save_sent.outbound.asyncio.create_subprocess_exec", spawn):
            with pytest.raises(DeliveryError, match="Unable to run"):
                await sender.send("a@x.com", "a@x.com", TEXT)


class TestHttpRelaySender:
    @pytest.fixture
    def settings(self):
        return Settings(
            _env_file=None,
            OUTBOUND_TRANSPORT="http",
            RELAY_URL="https://relay.example/api/send/",
            RELAY_API_TOKEN="secret",
        )

    async def test_posts_raw_message(self, settings):
        sender = HttpRelaySender(settings)
        sender.session = Mock()
        sender.session.post.return_value = Mock(status_code=202, text="queued")

        await sender.send("a@x.com", "a@x.com", TEXT)

        call = sender.session.post.call_args
        assert call.args == ("https://relay.example/api/send",)
        assert call.kwargs["headers"] == {"Authorization": "Token secret"}
        assert call.kwargs["data"] == {"from": "a@x.com", "to": "a@x.com"}
        assert call.kwargs["files"]["message"] == (
            "message.eml",
            TEXT.encode("utf-8"),
            "message/rfc822",
        )
        assert call.kwargs["timeout"] == 30.0

    async def test_error_status_raises(self, settings):
        sender = HttpRelaySender(settings)
        sender.session = Mock()
        sender.session.post.return_value = Mock(status_code=503, text="unavailable")

        with pytest.raises(DeliveryError, match="HTTP 503"):
            await sender.send("a@x.com", "a@x.com", TEXT)

    async def test_network_error_raises(self, settings):
        sender = HttpRelaySender(settings)
        sender.session = Mock()
        sender.session.post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(DeliveryError, match="Relay request failed"):
            await sender.send("a@x.com", "a@x.com", TEXT)

    def test_no_token_no_authorization_header(self):
        sender = HttpRelaySender(
            Settings(_env_file=None, OUTBOUND_TRANSPORT="http", RELAY_URL="https://relay.example/")
        )
        sender.session = Mock()
        sender.session.post.return_value = Mock(status_code=200, text="")

        sender._post("a@x.com", "a@x.com", TEXT)

        assert sender.session.post.call_args.kwargs["headers"] == {}


class TestBuildSender:
    def test_default_is_sendmail(self):
        assert isinstance(build_sender(Settings(_env_file=None)), SendmailSender)

    def test_http(self):
        settings = Settings(_env_file=None, OUTBOUND_TRANSPORT="http", RELAY_URL="https://relay.example")
        assert isinstance(build_sender(settings), HttpRelaySender)
