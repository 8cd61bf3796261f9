"""
test_delivery_engine.py — Channel fallback for a single recipient.

Covers:
    • Push first when online with a push address
    • SMS when offline / no push address / push failed
    • Offline queue as the last resort (attempt_count=0, exactly once)
    • Queue persistence failure surfaces as an unsuccessful outcome
    • Retry & backoff policy for synchronous push attempts
    • SMS text format and channel adapters (simulation, gateway, Expo)

Run with:
    pytest tests/test_delivery_engine.py -v
"""

from __future__ import annotations

import httpx
import pytest

from backend.safecheck.alerts.channels.push import (
    ExpoPushChannel,
    SimulatedPushChannel,
)
from backend.safecheck.alerts.channels.sms import (
    DisabledSMSChannel,
    GatewaySMSChannel,
    format_sms,
)
from backend.safecheck.alerts.delivery_engine import (
    AlertDeliveryEngine,
    RetryConfig,
    compute_backoff,
)
from backend.safecheck.alerts.fanout import EMERGENCY_TITLE, build_emergency_message
from backend.safecheck.alerts.models import DeliveryChannel, RecipientDescriptor
from backend.safecheck.alerts.offline_queue import OfflineQueue
from backend.safecheck.checkins.models import EmergencyEvent, GeoPoint
from backend.safecheck.storage.memory import InMemoryQueueStore

from conftest import FailingQueueStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

PUSH_TOKEN = "ExponentPushToken[abc123]"
PHONE = "+15551234567"


def _make_recipient(
    rid: str = "R001",
    push_address: str = PUSH_TOKEN,
    phone: str = PHONE,
) -> RecipientDescriptor:
    return RecipientDescriptor(
        recipient_id=rid, name="Test Contact",
        push_address=push_address, phone=phone,
    )


def _one_shot_configs():
    return {
        DeliveryChannel.PUSH: RetryConfig(1, 0.5, "exponential"),
        DeliveryChannel.SMS: RetryConfig(0, 0.0, "linear"),
    }


@pytest.fixture(autouse=True)
def _deterministic_retries(engine):
    engine.retry_configs = _one_shot_configs()


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Channel Selection
# ═══════════════════════════════════════════════════════════════════════════

class TestPushFirst:

    def test_online_with_push_address_uses_push(self, engine, push, sms):
        outcome = engine.deliver(_make_recipient(), "Title", "Body", {"k": "v"})
        assert outcome.channel_used == DeliveryChannel.PUSH
        assert outcome.success is True
        assert outcome.recipient_id == "R001"
        assert push.sent == [(PUSH_TOKEN, "Title", "Body", {"k": "v"})]
        assert sms.sent == []

    def test_push_success_leaves_queue_empty(self, engine, queue):
        engine.deliver(_make_recipient(), "T", "B")
        assert len(queue) == 0


class TestSmsFallback:

    def test_offline_phone_only_recipient_uses_sms_never_push(
        self, engine, push, sms, connectivity,
    ):
        connectivity.report(False)
        recipient = _make_recipient(push_address=None)

        outcome = engine.deliver(recipient, "Check-In", "Hello")

        assert outcome.channel_used == DeliveryChannel.SMS
        assert outcome.success is True
        assert push.sent == []
        assert sms.sent == [(PHONE, "Check-In: Hello")]

    def test_offline_skips_push_even_with_push_address(self, engine, push, sms, connectivity):
        connectivity.report(False)
        outcome = engine.deliver(_make_recipient(), "T", "B")
        assert outcome.channel_used == DeliveryChannel.SMS
        assert push.sent == []

    def test_no_push_address_online_uses_sms(self, engine, push):
        outcome = engine.deliver(_make_recipient(push_address=None), "T", "B")
        assert outcome.channel_used == DeliveryChannel.SMS
        assert push.sent == []

    def test_push_failure_falls_back_to_sms(self, engine, push, sms):
        push.succeed = False
        outcome = engine.deliver(_make_recipient(), "T", "B")
        assert outcome.channel_used == DeliveryChannel.SMS
        assert outcome.success is True
        # initial attempt + 1 retry, then SMS exactly once
        assert len(push.sent) == 2
        assert len(sms.sent) == 1

    def test_push_exception_treated_as_failure(self, engine, push, sms):
        push.raise_exc = RuntimeError("socket closed")
        outcome = engine.deliver(_make_recipient(), "T", "B")
        assert outcome.channel_used == DeliveryChannel.SMS
        assert outcome.success is True


class TestQueueFallback:

    def test_push_fails_no_sms_capability_queued_exactly_once(self, engine, push, sms, queue):
        push.succeed = False
        sms.available = False

        outcome = engine.deliver(_make_recipient(), "Alert", "Body", {"type": "checkIn"})

        assert outcome.channel_used == DeliveryChannel.QUEUED
        assert outcome.success is True
        pending = queue.pending()
        assert len(pending) == 1
        assert pending[0].attempt_count == 0
        assert pending[0].message_id == outcome.message_id
        assert pending[0].payload == {"type": "checkIn"}
        assert sms.sent == []

    def test_sms_failure_queues(self, engine, push, sms, queue):
        push.succeed = False
        sms.succeed = False
        outcome = engine.deliver(_make_recipient(), "T", "B")
        assert outcome.channel_used == DeliveryChannel.QUEUED
        assert outcome.success is True
        assert len(sms.sent) == 1
        assert len(queue) == 1

    def test_no_addresses_at_all_queues(self, engine, queue):
        outcome = engine.deliver(_make_recipient(push_address=None, phone=None), "T", "B")
        assert outcome.channel_used == DeliveryChannel.QUEUED
        assert len(queue) == 1

    def test_queue_persistence_failure_is_unsuccessful(self, push, sms, connectivity, events):
        push.succeed = False
        sms.available = False
        store = FailingQueueStore()
        queue = OfflineQueue(store, push, events=events)
        engine = AlertDeliveryEngine(push, sms, queue, connectivity, sleep=lambda s: None)

        outcome = engine.deliver(_make_recipient(), "T", "B")

        assert outcome.channel_used == DeliveryChannel.QUEUED
        assert outcome.success is False
        assert "disk full" in outcome.error
        assert store.count() == 0

    def test_queue_full_is_unsuccessful(self, push, sms, connectivity):
        push.succeed = False
        sms.available = False
        queue = OfflineQueue(InMemoryQueueStore(), push, max_size=1)
        engine = AlertDeliveryEngine(push, sms, queue, connectivity, sleep=lambda s: None)

        first = engine.deliver(_make_recipient("R1"), "T", "B")
        second = engine.deliver(_make_recipient("R2"), "T", "B")

        assert first.success is True
        assert second.success is False
        assert second.channel_used == DeliveryChannel.QUEUED
        assert "full" in second.error
        assert len(queue) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Retry & Backoff
# ═══════════════════════════════════════════════════════════════════════════

class TestBackoff:

    def test_exponential(self):
        config = RetryConfig(3, 0.5, "exponential")
        assert compute_backoff(config, 1) == 0.5
        assert compute_backoff(config, 2) == 1.0
        assert compute_backoff(config, 3) == 2.0

    def test_linear(self):
        config = RetryConfig(3, 2.0, "linear")
        assert compute_backoff(config, 1) == 2.0
        assert compute_backoff(config, 3) == 6.0


class TestPushRetries:

    def test_retry_sleeps_with_backoff(self, engine, push, sleeps):
        push.succeed = False
        engine.deliver(_make_recipient(), "T", "B")
        assert sleeps == [0.5]

    def test_second_attempt_success_stays_on_push(self, engine, push, sms):
        calls = []

        def flaky(address):
            calls.append(address)
            push.succeed = len(calls) > 1

        push.succeed = False
        push.on_send = flaky
        outcome = engine.deliver(_make_recipient(), "T", "B")

        assert outcome.channel_used == DeliveryChannel.PUSH
        assert len(push.sent) == 2
        assert sms.sent == []

    def test_going_offline_stops_push_retries(self, engine, push, sms, connectivity, sleeps):
        push.succeed = False
        push.on_send = lambda address: connectivity.report(False)

        outcome = engine.deliver(_make_recipient(), "T", "B")

        assert len(push.sent) == 1
        assert sleeps == []
        assert outcome.channel_used == DeliveryChannel.SMS

    def test_sms_is_not_retried(self, engine, push, sms):
        push.succeed = False
        sms.succeed = False
        engine.deliver(_make_recipient(), "T", "B")
        assert len(sms.sent) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Channel Adapters
# ═══════════════════════════════════════════════════════════════════════════

class TestSmsFormat:

    def test_title_and_body(self):
        assert format_sms("EMERGENCY ALERT", "Ana needs help!") == "EMERGENCY ALERT: Ana needs help!"

    def test_long_text_is_sent_whole(self):
        assert format_sms("T", "x" * 300) == "T: " + "x" * 300

    def test_emergency_location_survives_long_name(self, engine, sms, connectivity):
        connectivity.report(False)
        location = GeoPoint(37.7749295, -122.4194155)
        event = EmergencyEvent(
            originator_id="U1",
            originator_name="Alexandria Montgomery-Featherstonehaugh of the Northern Districts",
            recipient_contact_ids=("C1",),
            location=location,
        )

        outcome = engine.deliver(
            _make_recipient(push_address=None), EMERGENCY_TITLE, build_emergency_message(event),
        )

        assert outcome.channel_used == DeliveryChannel.SMS
        [(_, text)] = sms.sent
        assert text.endswith(location.maps_url())


class TestSimulatedChannels:

    def test_simulated_push_requires_address(self):
        channel = SimulatedPushChannel()
        assert channel.send("", "T", "B") == (False, "No push address")
        assert channel.send(PUSH_TOKEN, "T", "B") == (True, None)

    def test_disabled_sms_unavailable(self):
        assert DisabledSMSChannel().is_available() is False


class TestExpoPushChannel:

    def _make_channel(self, handler) -> ExpoPushChannel:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return ExpoPushChannel("https://push.test/send", client=client)

    def test_ok_ticket(self):
        seen = {}

        def handler(request):
            seen["body"] = request.content
            return httpx.Response(200, json={"data": {"status": "ok", "id": "t-1"}})

        ok, error = self._make_channel(handler).send(PUSH_TOKEN, "T", "B", {"a": 1})
        assert ok is True and error is None
        assert PUSH_TOKEN.encode() in seen["body"]

    def test_error_ticket(self):
        def handler(request):
            return httpx.Response(
                200, json={"data": {"status": "error", "message": "DeviceNotRegistered"}},
            )

        assert self._make_channel(handler).send(PUSH_TOKEN, "T", "B") == (
            False, "DeviceNotRegistered",
        )

    def test_http_error(self):
        def handler(request):
            return httpx.Response(503)

        assert self._make_channel(handler).send(PUSH_TOKEN, "T", "B") == (False, "HTTP 503")


class TestGatewaySmsChannel:

    def test_posts_to_gateway(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = request.content
            return httpx.Response(200, json={"status": "queued"})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        channel = GatewaySMSChannel("https://sms.test/send", api_key="k", client=client)

        assert channel.is_available() is True
        assert channel.send(PHONE, "hello") == (True, None)
        assert PHONE.encode() in seen["body"]
        assert seen["auth"] == "Bearer k"

    def test_gateway_failure(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        channel = GatewaySMSChannel("https://sms.test/send", client=client)
        ok, error = channel.send(PHONE, "hello")
        assert ok is False
        assert "500" in error
