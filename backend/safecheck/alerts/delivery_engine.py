"""
delivery_engine.py — Single-recipient delivery with channel fallback.

This is the one place that decides how a notification travels:

    ┌──────────────────────┐
    │ deliver(recipient,   │
    │   title, body, data) │
    └──────────┬───────────┘
               │ online AND push address?
               ▼
    ┌──────────────────────┐  ok
    │ 1. Push (+ retries)  │ ─────▶ {PUSH, success}
    └──────────┬───────────┘
               │ failed / offline / no token
               ▼
    ┌──────────────────────┐  ok
    │ 2. SMS               │ ─────▶ {SMS, success}
    └──────────┬───────────┘
               │ failed / no phone / no SMS capability
               ▼
    ┌──────────────────────┐
    │ 3. Offline queue     │ ─────▶ {QUEUED, success}
    └──────────────────────┘        {QUEUED, failure} if the queue
                                    could not persist the message

Channels are tried strictly one after another. Starting SMS while a push
attempt is still in flight could deliver the same alert twice.

═══════════════════════════════════════════════════════════════════════════
RETRY & BACKOFF
═══════════════════════════════════════════════════════════════════════════

    Channel   Max Retries   Backoff Base   Backoff Type
    ───────   ───────────   ────────────   ────────────
    Push      1 (config)    0.5s (config)  Exponential
    SMS       0             —              —

Backoff formula (exponential):
    delay = base × 2^(attempt - 1)

SMS is not retried synchronously: a second text for the same alert is
worse than falling through to the queue.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from backend.safecheck.alerts.channels.push import PushChannel
from backend.safecheck.alerts.channels.sms import SMSChannel, format_sms
from backend.safecheck.alerts.connectivity import ConnectivityMonitor
from backend.safecheck.alerts.models import (
    DeliveryChannel,
    DeliveryOutcome,
    QueuedMessage,
    RecipientDescriptor,
)
from backend.safecheck.alerts.offline_queue import OfflineQueue
from backend.safecheck.core.config import settings
from backend.safecheck.core.errors import (
    ChannelUnavailableError,
    DeliveryFailedError,
    QueuePersistenceError,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryConfig:
    """Per-channel retry parameters."""
    max_retries: int
    backoff_base_seconds: float
    backoff_type: str = "exponential"  # "exponential" or "linear"


def default_retry_configs() -> Dict[DeliveryChannel, RetryConfig]:
    return {
        DeliveryChannel.PUSH: RetryConfig(
            settings.PUSH_MAX_RETRIES, settings.PUSH_BACKOFF_SECONDS, "exponential",
        ),
        DeliveryChannel.SMS: RetryConfig(0, 0.0, "linear"),
    }


def compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Delay before the next retry.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Attempt that just failed (1-based).
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


# ═══════════════════════════════════════════════════════════════════════════
# Engine
# ═══════════════════════════════════════════════════════════════════════════

class AlertDeliveryEngine:
    """
    Deliver one notification to one recipient: push, else SMS, else queue.

    Channel-level failures never escape deliver(); they become the next
    fallback step. The only unsuccessful outcome is a queue that could not
    take the message.
    """

    def __init__(
        self,
        push_channel: PushChannel,
        sms_channel: SMSChannel,
        offline_queue: OfflineQueue,
        connectivity: ConnectivityMonitor,
        *,
        retry_configs: Optional[Dict[DeliveryChannel, RetryConfig]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._push = push_channel
        self._sms = sms_channel
        self._queue = offline_queue
        self._connectivity = connectivity
        self.retry_configs = retry_configs or default_retry_configs()
        self._sleep = sleep

    def deliver(
        self,
        recipient: RecipientDescriptor,
        title: str,
        body: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> DeliveryOutcome:
        payload = payload or {}
        rid = recipient.recipient_id
        fallback_reasons: List[str] = []

        # ── Step 1: push ──
        try:
            self._send_push(recipient, title, body, payload)
            logger.info("Delivered '%s' to %s via push", title, rid,
                        extra={"recipient_id": rid, "channel": "push"})
            return DeliveryOutcome(DeliveryChannel.PUSH, True, recipient_id=rid)
        except (ChannelUnavailableError, DeliveryFailedError) as exc:
            fallback_reasons.append(exc.message)
            logger.info("Push skipped for %s: %s", rid, exc.message)

        # ── Step 2: SMS ──
        try:
            self._send_sms(recipient, title, body)
            logger.info("Delivered '%s' to %s via SMS", title, rid,
                        extra={"recipient_id": rid, "channel": "sms"})
            return DeliveryOutcome(DeliveryChannel.SMS, True, recipient_id=rid)
        except (ChannelUnavailableError, DeliveryFailedError) as exc:
            fallback_reasons.append(exc.message)
            logger.info("SMS skipped for %s: %s", rid, exc.message)

        # ── Step 3: offline queue ──
        message = QueuedMessage(
            recipient=recipient, title=title, body=body, payload=payload,
        )
        try:
            self._queue.enqueue(message)
        except QueuePersistenceError as exc:
            logger.error(
                "No delivery path left for %s: %s (after: %s)",
                rid, exc.message, "; ".join(fallback_reasons),
                extra={"recipient_id": rid, "channel": "queued"},
            )
            return DeliveryOutcome(
                DeliveryChannel.QUEUED, False, recipient_id=rid, error=exc.message,
            )

        return DeliveryOutcome(
            DeliveryChannel.QUEUED, True,
            recipient_id=rid, message_id=message.message_id,
        )

    # ── Channels ──

    def _send_push(self, recipient, title, body, payload) -> None:
        channel = DeliveryChannel.PUSH.value
        if not self._connectivity.is_online:
            raise ChannelUnavailableError(channel, "device offline")
        if not recipient.has_push:
            raise ChannelUnavailableError(channel, "no push address")

        self._attempt(
            DeliveryChannel.PUSH, recipient,
            lambda: self._push.send(recipient.push_address, title, body, payload),
            requires_network=True,
        )

    def _send_sms(self, recipient, title, body) -> None:
        channel = DeliveryChannel.SMS.value
        if not recipient.has_phone:
            raise ChannelUnavailableError(channel, "no phone number")
        if not self._sms.is_available():
            raise ChannelUnavailableError(channel, "SMS not available")

        text = format_sms(title, body)
        self._attempt(DeliveryChannel.SMS, recipient, lambda: self._sms.send(recipient.phone, text))

    def _attempt(
        self,
        channel: DeliveryChannel,
        recipient: RecipientDescriptor,
        send: Callable[[], Any],
        *,
        requires_network: bool = False,
    ) -> None:
        """Run one channel's send with its retry policy; raise DeliveryFailedError if it never succeeds."""
        config = self.retry_configs.get(channel, RetryConfig(0, 0.0))
        error: Optional[str] = None

        for attempt in range(1, config.max_retries + 2):  # initial + retries
            try:
                ok, error = send()
            except Exception as exc:
                ok, error = False, f"{type(exc).__name__}: {exc}"
            if ok:
                return

            if attempt <= config.max_retries:
                if requires_network and not self._connectivity.is_online:
                    break
                delay = compute_backoff(config, attempt)
                logger.info(
                    "Retry %d/%d for %s via %s in %.1fs",
                    attempt, config.max_retries, recipient.recipient_id,
                    channel.value, delay,
                )
                self._sleep(delay)

        raise DeliveryFailedError(
            channel.value, recipient.recipient_id, error or "unknown error",
        )
