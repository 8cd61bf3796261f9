"""
test_fanout.py — Emergency fan-out and the emergency trigger.

Covers:
    • Per-recipient isolation (one recipient queued, others delivered)
    • Outcome ordering and tagging by recipient id
    • Exceptions raised inside a delivery become failed outcomes
    • EmergencyService: contact snapshot, missing contacts, message text,
      no-contacts validation, resolution failure
    • EmergencyReport aggregation

Run with:
    pytest tests/test_fanout.py -v
"""

from __future__ import annotations

import pytest

from backend.safecheck.alerts.delivery_engine import RetryConfig
from backend.safecheck.alerts.fanout import (
    EMERGENCY_TITLE,
    EmergencyFanout,
    EmergencyReport,
    EmergencyService,
    build_emergency_message,
)
from backend.safecheck.alerts.models import DeliveryChannel, RecipientDescriptor
from backend.safecheck.checkins.models import Contact, EmergencyEvent, GeoPoint
from backend.safecheck.core.errors import RecipientResolutionError, ValidationError
from backend.safecheck.core.events import EmergencyRaised
from backend.safecheck.storage.memory import InMemoryContactStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

def _make_recipient(rid: str, push: bool = True, phone: bool = True) -> RecipientDescriptor:
    return RecipientDescriptor(
        recipient_id=rid,
        name=f"Contact {rid}",
        push_address=f"ExponentPushToken[{rid}]" if push else None,
        phone=f"+1555000{rid[-1]}" if phone else None,
    )


def _make_event(*contact_ids: str, location=None) -> EmergencyEvent:
    return EmergencyEvent(
        originator_id="user-1",
        originator_name="Ana",
        recipient_contact_ids=tuple(contact_ids),
        location=location,
    )


def _add_contact(contacts, contact_id: str, owner_id: str = "user-1", **recipient_kw) -> Contact:
    contact = Contact(
        contact_id=contact_id,
        owner_id=owner_id,
        recipient=_make_recipient(contact_id, **recipient_kw),
    )
    contacts.add_contact(contact)
    return contact


@pytest.fixture(autouse=True)
def _no_push_retries(engine):
    engine.retry_configs = {
        DeliveryChannel.PUSH: RetryConfig(0, 0.0),
        DeliveryChannel.SMS: RetryConfig(0, 0.0),
    }


class _ExplodingEngine:
    """Delivers normally except for one recipient, where it raises."""

    def __init__(self, inner, explode_for: str):
        self._inner = inner
        self._explode_for = explode_for

    def deliver(self, recipient, title, body, payload=None):
        if recipient.recipient_id == self._explode_for:
            raise RuntimeError("adapter crashed")
        return self._inner.deliver(recipient, title, body, payload)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: EmergencyFanout
# ═══════════════════════════════════════════════════════════════════════════

class TestFanoutIsolation:

    def test_one_recipient_failing_is_queued_others_succeed(self, fanout, push, sms, queue):
        sms.available = False
        r1, r2, r3 = _make_recipient("r1"), _make_recipient("r2", phone=False), _make_recipient("r3")
        push.fail_for = {r2.push_address}

        outcomes = fanout.fanout(_make_event("r1", "r2", "r3"), [r1, r2, r3])

        assert [o.recipient_id for o in outcomes] == ["r1", "r2", "r3"]
        assert outcomes[0].success and outcomes[0].channel_used == DeliveryChannel.PUSH
        assert outcomes[2].success and outcomes[2].channel_used == DeliveryChannel.PUSH
        assert outcomes[1].success is True
        assert outcomes[1].channel_used == DeliveryChannel.QUEUED
        assert [m.recipient.recipient_id for m in queue.pending()] == ["r2"]

    def test_preserves_input_order(self, fanout):
        recipients = [_make_recipient(f"r{i}") for i in range(10)]
        outcomes = fanout.fanout(_make_event(), recipients)
        assert [o.recipient_id for o in outcomes] == [r.recipient_id for r in recipients]

    def test_every_recipient_gets_the_alert(self, fanout, push):
        recipients = [_make_recipient(f"r{i}") for i in range(5)]
        event = _make_event()
        fanout.fanout(event, recipients)

        assert sorted(push.addresses()) == sorted(r.push_address for r in recipients)
        for _, title, body, payload in push.sent:
            assert title == EMERGENCY_TITLE
            assert body == "Ana needs help!"
            assert payload == {"type": "emergency", "emergencyId": event.emergency_id}

    def test_raised_exception_isolated(self, engine):
        fanout = EmergencyFanout(_ExplodingEngine(engine, "r2"), max_workers=2)
        try:
            outcomes = fanout.fanout(
                _make_event(), [_make_recipient("r1"), _make_recipient("r2"), _make_recipient("r3")],
            )
        finally:
            fanout.shutdown()

        assert outcomes[0].success is True
        assert outcomes[1].success is False
        assert outcomes[1].recipient_id == "r2"
        assert "adapter crashed" in outcomes[1].error
        assert outcomes[2].success is True

    def test_empty_recipient_list(self, fanout):
        assert fanout.fanout(_make_event(), []) == []

    def test_offline_fanout_uses_sms(self, fanout, push, sms, connectivity):
        connectivity.report(False)
        outcomes = fanout.fanout(_make_event(), [_make_recipient("r1"), _make_recipient("r2")])
        assert all(o.channel_used == DeliveryChannel.SMS for o in outcomes)
        assert push.sent == []
        assert len(sms.sent) == 2


class TestEmergencyMessage:

    def test_with_location(self):
        event = _make_event(location=GeoPoint(12.97, 77.59))
        assert build_emergency_message(event) == (
            "Ana needs help! Location: https://maps.google.com/?q=12.97,77.59"
        )

    def test_unknown_originator_name(self):
        event = EmergencyEvent(originator_id="u", recipient_contact_ids=())
        assert build_emergency_message(event) == "Your contact needs help!"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: EmergencyService
# ═══════════════════════════════════════════════════════════════════════════

class TestRaiseEmergency:

    def test_notifies_every_contact(self, emergencies, contacts, push, recorder):
        contacts.add_user(RecipientDescriptor("user-1", name="Ana", phone="+15559999999"))
        for cid in ("c1", "c2", "c3"):
            _add_contact(contacts, cid)
        _add_contact(contacts, "other", owner_id="user-2")

        report = emergencies.raise_emergency("user-1", GeoPoint(1.5, 2.5))

        assert isinstance(report, EmergencyReport)
        assert set(report.event.recipient_contact_ids) == {"c1", "c2", "c3"}
        assert report.reached == 3
        assert report.failed == 0
        assert len(push.sent) == 3
        assert push.sent[0][2] == "Ana needs help! Location: https://maps.google.com/?q=1.5,2.5"

        raised = recorder.of_type(EmergencyRaised)
        assert len(raised) == 1
        assert raised[0].recipient_count == 3

    def test_name_falls_back_to_phone(self, emergencies, contacts, push):
        contacts.add_user(RecipientDescriptor("user-1", phone="+15559999999"))
        _add_contact(contacts, "c1")
        emergencies.raise_emergency("user-1")
        assert push.sent[0][2] == "+15559999999 needs help!"

    def test_no_contacts_rejected(self, emergencies, push):
        with pytest.raises(ValidationError):
            emergencies.raise_emergency("user-1")
        assert push.sent == []

    def test_contact_deleted_after_snapshot_is_skipped(self, emergencies, contacts, push):
        _add_contact(contacts, "c1")
        _add_contact(contacts, "c2")
        event = _make_event("c1", "c2")
        contacts.remove_contact("c2")

        report = emergencies.notify(event)

        assert [o.recipient_id for o in report.outcomes] == ["c1"]
        assert len(push.sent) == 1

    def test_contact_added_after_snapshot_not_notified(self, emergencies, contacts, push):
        _add_contact(contacts, "c1")
        event = _make_event("c1")
        _add_contact(contacts, "c2")

        emergencies.notify(event)

        assert push.addresses() == ["ExponentPushToken[c1]"]

    def test_recipients_for_matches_owned_contacts(self, contacts):
        _add_contact(contacts, "c1")
        _add_contact(contacts, "other", owner_id="user-2")

        recipients = contacts.recipients_for("user-1")

        assert [r.recipient_id for r in recipients] == ["c1"]
        assert recipients[0].push_address == "ExponentPushToken[c1]"

    def test_resolution_failure_raises_before_any_delivery(self, fanout, push):
        class BrokenContacts(InMemoryContactStore):
            def contacts_for(self, user_id):
                raise ConnectionError("contact service down")

        service = EmergencyService(BrokenContacts(), fanout)
        with pytest.raises(RecipientResolutionError) as exc_info:
            service.raise_emergency("user-1")
        assert exc_info.value.status_code == 502
        assert push.sent == []


class TestEmergencyReport:

    def test_to_dict(self, emergencies, contacts):
        _add_contact(contacts, "c1")
        data = emergencies.raise_emergency("user-1").to_dict()
        assert data["total_recipients"] == 1
        assert data["recipients_reached"] == 1
        assert data["reach_rate"] == "100.0%"
        assert data["outcomes"][0]["recipient_id"] == "c1"
        assert data["emergency_id"].startswith("EMG-")

    def test_reach_rate_zero_outcomes(self):
        report = EmergencyReport(event=_make_event())
        assert report.reach_rate == 0.0
