"""Tests for session creation and ending."""
import re
import uuid

import pytest

from ventbox.common import errors
from ventbox.matches import services
from ventbox.matches.models import VentSession
from ventbox.queues import admission
from ventbox.queues.models import QueueEntry
from ventbox.queues.roles import Listener, Venter

pytestmark = pytest.mark.django_db

VENT = "I feel overwhelmed today"
PLAN = "20-Min Vent"


def _pair(venter_id="venter", listener_id="listener"):
    venter = admission.enqueue(venter_id, Venter(vent_message=VENT, plan=PLAN))
    listener = admission.enqueue(listener_id, Listener())
    return venter, listener


def _create(venter, listener):
    return services.create_session(
        venter_id=venter.participant_id,
        listener_id=listener.participant_id,
        venter_entry_id=venter.entry_id,
        listener_entry_id=listener.entry_id,
        vent_message=venter.vent_message,
        plan=venter.plan,
    )


def test_create_session_marks_both_entries_matched():
    venter, listener = _pair()

    session = _create(venter, listener)

    assert session.status == VentSession.ACTIVE
    assert session.venter_id == "venter"
    assert session.listener_id == "listener"
    assert session.vent_message == VENT
    assert session.plan == PLAN
    for entry in (venter, listener):
        entry.refresh_from_db()
        assert entry.status == QueueEntry.MATCHED
        assert entry.session_id == session.session_id
        assert entry.matched_at is not None
    assert admission.own_matched_session_id(listener.entry_id) == session.session_id


def test_same_entry_cannot_be_matched_twice():
    venter, listener = _pair()
    other_listener = admission.enqueue("listener-2", Listener())

    _create(venter, listener)
    with pytest.raises(errors.ConflictError) as exc_info:
        _create(venter, other_listener)

    assert str(venter.entry_id) in exc_info.value.stale_entry_ids
    assert VentSession.objects.count() == 1
    other_listener.refresh_from_db()
    assert other_listener.status == QueueEntry.WAITING


def test_conflict_on_missing_entry_leaves_no_session():
    venter, listener = _pair()
    admission.dequeue(listener.entry_id)

    with pytest.raises(errors.ConflictError):
        _create(venter, listener)

    assert VentSession.objects.count() == 0
    venter.refresh_from_db()
    assert venter.status == QueueEntry.WAITING


def test_entries_must_form_a_venter_listener_pair():
    first = admission.enqueue("l-1", Listener())
    second = admission.enqueue("l-2", Listener())

    with pytest.raises(errors.ValidationError):
        services.create_session(
            venter_id="l-1",
            listener_id="l-2",
            venter_entry_id=first.entry_id,
            listener_entry_id=second.entry_id,
            vent_message=VENT,
            plan=PLAN,
        )
    assert VentSession.objects.count() == 0
    assert QueueEntry.objects.filter(status=QueueEntry.WAITING).count() == 2


def test_create_session_notifies_once_after_commit(django_capture_on_commit_callbacks):
    venter, listener = _pair()

    with django_capture_on_commit_callbacks() as callbacks:
        _create(venter, listener)

    assert len(callbacks) == 1


def test_end_session_is_idempotent_and_cleans_matched_entries():
    venter, listener = _pair()
    session = _create(venter, listener)

    assert services.end_session(session.session_id, 312, VentSession.MANUAL_ENDED) is True
    assert services.end_session(session.session_id, 999, VentSession.AUTO_ENDED) is False

    session.refresh_from_db()
    assert session.status == VentSession.ENDED
    assert session.duration_seconds == 312
    assert session.end_reason == VentSession.MANUAL_ENDED
    assert session.ended_at is not None
    assert not QueueEntry.objects.filter(entry_id__in=[venter.entry_id, listener.entry_id]).exists()


def test_end_unknown_session_is_a_noop():
    assert services.end_session(uuid.uuid4(), 10) is False


def test_end_session_rejects_unknown_reason():
    venter, listener = _pair()
    session = _create(venter, listener)

    with pytest.raises(errors.ValidationError):
        services.end_session(session.session_id, 10, "crashed")

    session.refresh_from_db()
    assert session.status == VentSession.ACTIVE


def test_negative_duration_is_clamped():
    venter, listener = _pair()
    session = _create(venter, listener)

    services.end_session(session.session_id, -5)
    session.refresh_from_db()
    assert session.duration_seconds == 0


def test_channel_id_format_and_uniqueness():
    ids = {services.generate_channel_id() for _ in range(50)}

    assert len(ids) == 50
    for channel_id in ids:
        assert re.fullmatch(r"ventbox_[0-9a-z]+_[0-9a-f]{12}", channel_id)


def test_session_payload_is_camel_case():
    venter, listener = _pair()
    payload = _create(venter, listener).as_payload()

    assert payload["status"] == VentSession.ACTIVE
    assert payload["ventMessage"] == VENT
    assert payload["endReason"] is None
    assert payload["channelId"].startswith("ventbox_")
