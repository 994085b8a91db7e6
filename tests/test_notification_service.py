"""
Tests for outbound SMS delivery.

These tests verify:
1. ISOLATION: One failing recipient never affects the others
2. CONCURRENCY: The worker pool never exceeds its bound
3. TWILIO: The REST transport posts the right form and surfaces errors
"""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from take_settlement.core.config import Settings
from take_settlement.services.notification_service import (
    LogTransport,
    NotificationDispatcher,
    OutboundSms,
    SmsTransport,
    TwilioConfig,
    TwilioTransport,
    build_transport,
)


class SlowTransport(SmsTransport):
    """Tracks how many sends are in flight at once."""

    def __init__(self):
        self.in_flight = 0
        self.peak = 0
        self.delivered: list[str] = []

    async def send(self, to: str, body: str) -> None:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        self.delivered.append(to)


# =============================================================================
# TEST: DISPATCHER
# =============================================================================


class TestDispatcher:
    @pytest.mark.asyncio
    async def test_send_success(self, dispatcher, transport):
        result = await dispatcher.send("+15550000001", "hello")

        assert result.success is True
        assert result.error is None
        assert transport.bodies_for("+15550000001") == ["hello"]

    @pytest.mark.asyncio
    async def test_send_failure_does_not_raise(self, dispatcher, transport):
        transport.fail_for.add("+15550000001")

        result = await dispatcher.send("+15550000001", "hello")

        assert result.success is False
        assert "carrier rejected" in result.error

    @pytest.mark.asyncio
    async def test_send_many_isolates_failures(self, dispatcher, transport):
        transport.fail_for.add("+15550000002")
        messages = [OutboundSms(to=f"+1555000000{i}", body="hi") for i in range(1, 5)]

        report = await dispatcher.send_many(messages)

        assert (report.sent, report.failed) == (3, 1)
        assert [r.recipient for r in report.failures] == ["+15550000002"]
        assert sorted(m.to for m in transport.sent) == [
            "+15550000001",
            "+15550000003",
            "+15550000004",
        ]

    @pytest.mark.asyncio
    async def test_send_many_empty(self, dispatcher):
        report = await dispatcher.send_many([])

        assert (report.sent, report.failed, report.results) == (0, 0, [])

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        transport = SlowTransport()
        dispatcher = NotificationDispatcher(transport, concurrency=2)

        report = await dispatcher.send_many(
            [OutboundSms(to=f"+1555000{i:04d}", body="hi") for i in range(10)]
        )

        assert report.sent == 10
        assert transport.peak == 2

    def test_concurrency_must_be_positive(self, transport):
        with pytest.raises(ValueError):
            NotificationDispatcher(transport, concurrency=0)


# =============================================================================
# TEST: TWILIO TRANSPORT
# =============================================================================


class TestTwilioTransport:
    @staticmethod
    def _transport(handler, **config) -> TwilioTransport:
        defaults = {"account_sid": "AC123", "auth_token": "secret", "from_number": "+15550009999"}
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return TwilioTransport(TwilioConfig(**{**defaults, **config}), client=client)

    @pytest.mark.asyncio
    async def test_posts_message_form(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["form"] = parse_qs(request.content.decode())
            return httpx.Response(201, json={"sid": "SM1"})

        transport = self._transport(handler)
        await transport.send("+15550000001", "Pack is open")

        assert captured["url"] == (
            "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        )
        assert captured["auth"].startswith("Basic ")
        assert captured["form"] == {
            "To": ["+15550000001"],
            "Body": ["Pack is open"],
            "From": ["+15550009999"],
        }

    @pytest.mark.asyncio
    async def test_messaging_service_takes_precedence(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["form"] = parse_qs(request.content.decode())
            return httpx.Response(201, json={"sid": "SM1"})

        transport = self._transport(handler, messaging_service_sid="MG1")
        await transport.send("+15550000001", "hi")

        assert captured["form"]["MessagingServiceSid"] == ["MG1"]
        assert "From" not in captured["form"]

    @pytest.mark.asyncio
    async def test_error_status_fails_the_send(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"message": "invalid To"})

        dispatcher = NotificationDispatcher(self._transport(handler))
        result = await dispatcher.send("+1", "hi")

        assert result.success is False
        assert "400" in result.error

    def test_requires_sender(self):
        with pytest.raises(ValueError):
            TwilioTransport(TwilioConfig(account_sid="AC1", auth_token="secret"))


class TestBuildTransport:
    def test_log_transport_by_default(self):
        assert isinstance(build_transport(Settings(sms_transport="log")), LogTransport)

    @pytest.mark.asyncio
    async def test_twilio_transport(self):
        settings = Settings(
            sms_transport="twilio",
            TWILIO_ACCOUNT_SID="AC1",
            TWILIO_AUTH_TOKEN="secret",
            TWILIO_FROM_NUMBER="+15550009999",
        )

        transport = build_transport(settings)

        assert isinstance(transport, TwilioTransport)
        await transport.close()

    def test_incomplete_twilio_credentials(self):
        settings = Settings(sms_transport="twilio", TWILIO_ACCOUNT_SID="AC1")

        with pytest.raises(ValueError):
            build_transport(settings)
