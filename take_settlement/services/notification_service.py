"""
Notification Service: Outbound SMS delivery.

This module is responsible for:
1. Sending single SMS messages through a pluggable transport
2. Fanning out batches through a bounded worker pool
3. Reporting per-recipient success or failure without raising
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from ..core.config import Settings


logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class TwilioConfig:
    """Twilio REST delivery configuration."""
    account_sid: str
    auth_token: str
    from_number: str | None = None
    messaging_service_sid: str | None = None
    timeout_seconds: float = 10.0


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class OutboundSms:
    """A single message addressed to one phone number."""
    to: str
    body: str


@dataclass
class DispatchResult:
    """Outcome of sending one message."""
    recipient: str
    success: bool
    error: str | None = None


@dataclass
class DispatchReport:
    """Aggregate outcome of a fan-out."""
    sent: int = 0
    failed: int = 0
    results: list[DispatchResult] = field(default_factory=list)

    @property
    def failures(self) -> list[DispatchResult]:
        return [r for r in self.results if not r.success]


# =============================================================================
# TRANSPORTS
# =============================================================================


class SmsTransport(ABC):
    """Abstract base for SMS delivery transports."""

    @abstractmethod
    async def send(self, to: str, body: str) -> None:
        """
        Deliver a message.

        Raises on any delivery failure; the dispatcher turns the
        exception into a failed DispatchResult.
        """
        pass

    async def close(self) -> None:
        pass


class LogTransport(SmsTransport):
    """Development transport: logs messages instead of sending them."""

    async def send(self, to: str, body: str) -> None:
        logger.info(f"[SMS] To: {to}, Body: {body!r}")


class TwilioTransport(SmsTransport):
    """Sends messages through the Twilio Messages REST API."""

    def __init__(self, config: TwilioConfig, client: httpx.AsyncClient | None = None):
        if not config.from_number and not config.messaging_service_sid:
            raise ValueError("Twilio needs a from number or a messaging service SID")
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def messages_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self._config.account_sid}/Messages.json"

    async def send(self, to: str, body: str) -> None:
        data = {"To": to, "Body": body}
        if self._config.messaging_service_sid:
            data["MessagingServiceSid"] = self._config.messaging_service_sid
        else:
            data["From"] = self._config.from_number

        response = await self._client.post(
            self.messages_url,
            data=data,
            auth=(self._config.account_sid, self._config.auth_token),
        )
        if response.status_code >= 400:
            raise RuntimeError(
                f"Twilio returned {response.status_code}: {response.text[:200]}"
            )

        sid = response.json().get("sid")
        logger.debug(f"Twilio accepted message {sid} to {to}")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_transport(settings: "Settings") -> SmsTransport:
    """Pick the transport named by ``sms_transport``."""
    if settings.sms_transport == "twilio":
        if not settings.twilio_enabled:
            raise ValueError("sms_transport=twilio but Twilio credentials are incomplete")
        return TwilioTransport(
            TwilioConfig(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
                messaging_service_sid=settings.twilio_messaging_service_sid,
                timeout_seconds=settings.sms_request_timeout_seconds,
            )
        )
    return LogTransport()


# =============================================================================
# DISPATCHER
# =============================================================================


class NotificationDispatcher:
    """
    Sends SMS through a transport with bounded concurrency.

    Neither ``send`` nor ``send_many`` raises for delivery problems: each
    message yields a DispatchResult and one failing recipient never
    cancels its siblings.
    """

    def __init__(self, transport: SmsTransport, concurrency: int = 5):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._transport = transport
        self._concurrency = concurrency

    async def send(self, to: str, body: str) -> DispatchResult:
        """Send one message."""
        try:
            await self._transport.send(to, body)
            return DispatchResult(recipient=to, success=True)
        except Exception as e:
            error_msg = f"Failed to send SMS: {e}"
            logger.error(f"{error_msg} (to={to})")
            return DispatchResult(recipient=to, success=False, error=error_msg)

    async def send_many(self, messages: list[OutboundSms]) -> DispatchReport:
        """Fan out a batch through the worker pool."""
        report = DispatchReport()
        if not messages:
            return report

        semaphore = asyncio.Semaphore(self._concurrency)

        async def worker(message: OutboundSms) -> DispatchResult:
            async with semaphore:
                return await self.send(message.to, message.body)

        results = await asyncio.gather(*(worker(m) for m in messages))

        for result in results:
            report.results.append(result)
            if result.success:
                report.sent += 1
            else:
                report.failed += 1

        if report.failed:
            logger.warning(
                f"SMS fan-out finished with failures: sent={report.sent}, failed={report.failed}"
            )
        return report

    async def close(self) -> None:
        await self._transport.close()
