"""
sms.py — SMS delivery channel.

Delivery mechanism:
    • Simulation: logs the text (development)
    • Gateway:    HTTP POST {to, text} to a configurable SMS gateway
    • Disabled:   device/deployment has no SMS capability

Message template:

    "{title}: {body}"        (sent whole; the gateway segments long texts)

SMS is the resilience fallback for connectivity loss; it is never retried
from the offline queue.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import httpx

from backend.safecheck.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SendResult = Tuple[bool, Optional[str]]


def format_sms(title: str, body: str) -> str:
    return f"{title}: {body}" if title else body


class SMSChannel(ABC):
    """
    SMS delivery capability.

    Contract:
    - is_available() reports whether SMS can be attempted at all.
    - send() returns (ok, error); may raise on transport errors.
    """

    name = "sms"

    @abstractmethod
    def send(self, phone_number: str, text: str) -> SendResult:
        raise NotImplementedError

    @abstractmethod
    def is_available(self) -> bool:
        raise NotImplementedError


class SimulatedSMSChannel(SMSChannel):
    """Logs instead of sending."""

    def is_available(self) -> bool:
        return True

    def send(self, phone_number, text) -> SendResult:
        if not phone_number:
            return False, "No phone number on file"
        logger.info("[SMS] → %s: %d chars → '%s'", phone_number, len(text), text[:80])
        return True, None


class DisabledSMSChannel(SMSChannel):
    """No SMS capability (e.g. tablet-class device)."""

    def is_available(self) -> bool:
        return False

    def send(self, phone_number, text) -> SendResult:
        return False, "SMS not available"


class GatewaySMSChannel(SMSChannel):
    """HTTP SMS gateway."""

    def __init__(
        self,
        gateway_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_seconds: float = 15.0,
        client: Optional[httpx.Client] = None,
    ):
        self.gateway_url = gateway_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._http_client = client

    def _get_client(self) -> httpx.Client:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.Client(timeout=self.timeout_seconds)
        return self._http_client

    def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    def is_available(self) -> bool:
        return bool(self.gateway_url)

    def send(self, phone_number, text) -> SendResult:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = self._get_client().post(
                self.gateway_url,
                json={"to": phone_number, "text": text},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return False, f"HTTP {exc.response.status_code}"
        except httpx.HTTPError as exc:
            return False, f"{type(exc).__name__}: {exc}"

        logger.info("[SMS/Gateway] Sent %d chars to %s", len(text), phone_number)
        return True, None


def build_sms_channel(config: Optional[Settings] = None) -> SMSChannel:
    """Create the SMS channel selected by SMS_PROVIDER."""
    config = config or default_settings
    provider = config.SMS_PROVIDER.lower()

    if provider == "gateway":
        if not config.SMS_GATEWAY_URL:
            logger.warning("SMS_PROVIDER=gateway without SMS_GATEWAY_URL, SMS disabled")
            return DisabledSMSChannel()
        return GatewaySMSChannel(
            config.SMS_GATEWAY_URL,
            api_key=config.SMS_API_KEY,
            timeout_seconds=config.SMS_TIMEOUT_SECONDS,
        )
    if provider == "disabled":
        return DisabledSMSChannel()
    if provider != "simulation":
        logger.warning("Unknown SMS_PROVIDER '%s', using simulation", provider)
    return SimulatedSMSChannel()
