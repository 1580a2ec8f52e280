"""Test configuration and fixtures."""
import asyncio
import itertools
import uuid
from dataclasses import dataclass, field
from typing import Optional

import pytest

from ventbox.common import errors
from ventbox.matches.models import VentSession
from ventbox.matches.services import generate_channel_id
from ventbox.matches.state_machine import MatchingStateMachine, ParticipantIdentity
from ventbox.queues.models import QueueEntry
from ventbox.queues.roles import LISTENER, VENTER, Venter, role_kind, validate_role

_seq = itertools.count()


@dataclass
class FakeEntry:
    participant_id: str
    role: str
    vent_message: Optional[str] = None
    plan: Optional[str] = None
    status: str = QueueEntry.WAITING
    session_id: Optional[str] = None
    entry_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    seq: int = field(default_factory=lambda: next(_seq))


@dataclass
class FakeSession:
    venter_id: str
    listener_id: str
    vent_message: str
    plan: str
    entry_ids: tuple
    status: str = VentSession.ACTIVE
    duration_seconds: int = 0
    end_reason: Optional[str] = None
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    channel_id: str = field(default_factory=generate_channel_id)


class FakeStream:
    """asyncio.Queue 로 흉내낸 후보 스트림."""

    def __init__(self, role: str, exclude_participant: Optional[str]):
        self.role = role
        self.exclude_participant = exclude_participant
        self.closed = False
        self._queue = asyncio.Queue()

    def push(self, snapshot):
        if not self.closed:
            self._queue.put_nowait(snapshot)

    async def cancel(self):
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is None or self.closed:
            raise StopAsyncIteration
        return item


class FakeStore:
    """
    MatchingStore 와 같은 조건부 의미를 가진 in-memory store.
    queue 가 바뀔 때마다 열린 스트림 전부에 새 스냅샷을 민다.
    """

    def __init__(self):
        self.entries = {}
        self.sessions = {}
        self.streams = []
        self.calls = []
        self.fail_on = {}
        self.create_gate: Optional[asyncio.Event] = None
        self.commit_gate: Optional[asyncio.Event] = None

    # ---- helpers ----

    def waiting(self, role: str, exclude_participant: Optional[str] = None):
        return sorted(
            (
                e
                for e in self.entries.values()
                if e.role == role
                and e.status == QueueEntry.WAITING
                and e.participant_id != exclude_participant
            ),
            key=lambda e: e.seq,
        )

    def entries_of(self, participant_id: str):
        return [e for e in self.entries.values() if e.participant_id == participant_id]

    def open_streams(self):
        return [s for s in self.streams if not s.closed]

    def _publish(self):
        for stream in self.open_streams():
            stream.push(self.waiting(stream.role, stream.exclude_participant))

    def _maybe_fail(self, name: str):
        self.calls.append(name)
        exc = self.fail_on.get(name)
        if exc is not None:
            raise exc

    # ---- store API ----

    async def enqueue(self, participant_id, role):
        self._maybe_fail("enqueue")
        role = validate_role(role)
        entry = FakeEntry(participant_id=str(participant_id), role=role_kind(role))
        if isinstance(role, Venter):
            entry.vent_message = role.vent_message
            entry.plan = role.plan
        self.entries[entry.entry_id] = entry
        self._publish()
        return entry

    async def dequeue(self, entry_id):
        self.calls.append("dequeue")
        if self.entries.pop(str(entry_id), None) is not None:
            self._publish()

    async def clear_participant(self, participant_id):
        self._maybe_fail("clear_participant")
        stale = [
            e.entry_id
            for e in self.entries.values()
            if e.participant_id == str(participant_id) and e.status == QueueEntry.WAITING
        ]
        for entry_id in stale:
            del self.entries[entry_id]
        if stale:
            self._publish()
        return len(stale)

    async def subscribe(self, role_kind, *, exclude_participant=None):
        self._maybe_fail("subscribe")
        stream = FakeStream(role_kind, exclude_participant)
        self.streams.append(stream)
        stream.push(self.waiting(role_kind, exclude_participant))
        return stream

    async def create_session(
        self, *, venter_id, listener_id, venter_entry_id, listener_entry_id, vent_message, plan
    ):
        self._maybe_fail("create_session")
        if self.create_gate is not None:
            await self.create_gate.wait()

        wanted = (str(venter_entry_id), str(listener_entry_id))
        stale = [
            eid
            for eid in wanted
            if eid not in self.entries or self.entries[eid].status != QueueEntry.WAITING
        ]
        if stale:
            raise errors.ConflictError(stale_entry_ids=stale)

        session = FakeSession(
            venter_id=str(venter_id),
            listener_id=str(listener_id),
            vent_message=vent_message,
            plan=plan,
            entry_ids=wanted,
        )
        self.sessions[session.session_id] = session
        for eid in wanted:
            self.entries[eid].status = QueueEntry.MATCHED
            self.entries[eid].session_id = session.session_id
        self._publish()
        if self.commit_gate is not None:
            # 세션은 만들어졌지만 호출자에게 아직 안 돌아감
            await self.commit_gate.wait()
        return session

    async def end_session(self, session_id, duration_seconds, end_reason):
        self._maybe_fail("end_session")
        session = self.sessions.get(str(session_id))
        if session is None or session.status != VentSession.ACTIVE:
            return False
        session.status = VentSession.ENDED
        session.duration_seconds = duration_seconds
        session.end_reason = end_reason
        for eid in session.entry_ids:
            entry = self.entries.get(eid)
            if entry is not None and entry.status == QueueEntry.MATCHED:
                del self.entries[eid]
        return True

    async def matched_session_for(self, entry_id):
        self._maybe_fail("matched_session_for")
        entry = self.entries.get(str(entry_id))
        if entry is None or entry.status != QueueEntry.MATCHED:
            return None
        return self.sessions.get(entry.session_id)


class Recorder:
    def __init__(self):
        self.statuses = []
        self.alerts = []
        self.matches = []

    async def on_status(self, status):
        self.statuses.append(status)

    async def on_alert(self, alert):
        self.alerts.append(alert)

    async def on_match(self, handoff):
        self.matches.append(handoff)

    @property
    def alert_codes(self):
        return [a.code for a in self.alerts]


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def make_machine(store):
    """(machine, recorder) 를 만들어 주는 팩토리."""

    def _make(participant_id=None, *, authenticated=True, **kwargs):
        recorder = Recorder()
        kwargs.setdefault("no_match_timeout", 5)
        machine = MatchingStateMachine(
            ParticipantIdentity(participant_id or str(uuid.uuid4()), authenticated),
            store=store,
            on_match=recorder.on_match,
            on_alert=recorder.on_alert,
            on_status=recorder.on_status,
            **kwargs,
        )
        return machine, recorder

    return _make
