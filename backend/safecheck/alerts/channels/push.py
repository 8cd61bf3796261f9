"""
push.py — Push notification channel.

Delivery mechanism:
    • Expo push service: HTTP POST of {to, sound, title, body, data}
    • Delivery receipt: the per-message ticket in the response body

In development the simulation provider logs the notification and reports
success, so the rest of the pipeline can be exercised without network.

═══════════════════════════════════════════════════════════════════════════
WHY PUSH IS THE FIRST CHANNEL
═══════════════════════════════════════════════════════════════════════════

    1. Zero marginal cost    — no per-message charge (unlike SMS)
    2. Rich content          — structured data payload opens the right screen
    3. Instant delivery      — sub-second latency via persistent connection

Limitation: it needs network on the sending device. When that is missing
the delivery engine falls back to SMS, then to the offline queue.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import httpx

from backend.safecheck.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SendResult = Tuple[bool, Optional[str]]


class PushChannel(ABC):
    """
    Push delivery capability.

    Contract:
    - send() returns (ok, error). ok=False means the attempt was made and
      failed; error carries a human-readable reason.
    - Implementations may raise on transport errors; the delivery engine
      treats a raised exception the same as (False, str(exc)).
    """

    name = "push"

    @abstractmethod
    def send(
        self,
        push_address: str,
        title: str,
        body: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> SendResult:
        raise NotImplementedError


class SimulatedPushChannel(PushChannel):
    """Logs instead of sending. Used in development and demos."""

    def send(self, push_address, title, body, payload=None) -> SendResult:
        if not push_address:
            return False, "No push address"
        logger.info(
            "[PUSH] → %s: %s | %s",
            push_address[:24] + ("..." if len(push_address) > 24 else ""),
            title, body,
        )
        return True, None


class ExpoPushChannel(PushChannel):
    """Expo push service over HTTP."""

    def __init__(
        self,
        api_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds
        self._http_client = client

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.Client(timeout=self.timeout_seconds)
        return self._http_client

    def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            self._http_client.close()

    def send(self, push_address, title, body, payload=None) -> SendResult:
        message = {
            "to": push_address,
            "sound": "default",
            "title": title,
            "body": body,
            "data": payload or {},
        }

        try:
            response = self._get_client().post(
                self.api_url,
                json=message,
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return False, f"HTTP {exc.response.status_code}"
        except httpx.HTTPError as exc:
            return False, f"{type(exc).__name__}: {exc}"

        ticket = (response.json() or {}).get("data") or {}
        if isinstance(ticket, list):
            ticket = ticket[0] if ticket else {}
        if ticket.get("status") == "error":
            return False, ticket.get("message") or "push ticket error"

        logger.info("[PUSH/Expo] Sent '%s' (ticket=%s)", title, ticket.get("id"))
        return True, None


def build_push_channel(config: Optional[Settings] = None) -> PushChannel:
    """Create the push channel selected by PUSH_PROVIDER."""
    config = config or default_settings
    provider = config.PUSH_PROVIDER.lower()

    if provider == "expo":
        return ExpoPushChannel(
            config.PUSH_API_URL,
            timeout_seconds=config.PUSH_TIMEOUT_SECONDS,
        )
    if provider != "simulation":
        logger.warning("Unknown PUSH_PROVIDER '%s', using simulation", provider)
    return SimulatedPushChannel()
