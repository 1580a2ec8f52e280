"""Tests for the voice call controller and token client."""
import asyncio

import pytest
import requests

from conftest import wait_until
from ventbox.calls.transport import JoinResult, VoiceTokenClient
from ventbox.calls.voice_call import VoiceCall
from ventbox.common import errors
from ventbox.common.backoff import BackoffPolicy
from ventbox.common.shared import SharedResource
from ventbox.matches.models import VentSession
from ventbox.matches.state_machine import MatchHandoff

NO_WAIT = BackoffPolicy(max_attempts=2, base_delay=0, multiplier=1, max_delay=0)

HANDOFF = MatchHandoff(
    channel_id="ventbox_abc_0123456789ab",
    session_id="session-1",
    plan="10-Min Vent",
    vent_message="I feel overwhelmed today",
    is_initiating_participant=True,
)


class _Engine:
    def __init__(self, *results):
        self._results = list(results) or [JoinResult(joined=True, connection_state="connected")]
        self.joins = []
        self.left = 0
        self.closed = False

    async def join_channel(self, channel_id, *, token, uid):
        self.joins.append((channel_id, token, uid))
        result = self._results.pop(0) if len(self._results) > 1 else self._results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def leave_channel(self):
        self.left += 1

    def close(self):
        self.closed = True


class _Tokens:
    async def fetch_token(self, channel_id, uid):
        return f"token-for-{uid}"


class _Ends:
    def __init__(self):
        self.calls = []

    async def __call__(self, session_id, duration_seconds, end_reason):
        self.calls.append((session_id, duration_seconds, end_reason))
        return True


def _call(engine, ends=None, **kwargs):
    resource = SharedResource("voice-engine-test", lambda: engine, lambda e: e.close())
    call = VoiceCall(
        HANDOFF,
        "participant-1",
        engines=resource,
        token_client=_Tokens(),
        end_session=ends or _Ends(),
        policy=NO_WAIT,
        **kwargs,
    )
    return call, resource


@pytest.mark.asyncio
async def test_connect_joins_the_channel_with_a_token():
    engine = _Engine()
    call, resource = _call(engine)

    result = await call.connect()

    assert result.joined
    assert call.connected
    assert engine.joins == [(HANDOFF.channel_id, "token-for-participant-1", "participant-1")]
    assert resource.refs == 1
    assert call.time_remaining == 600
    await call.end()


@pytest.mark.asyncio
async def test_join_is_retried_once():
    engine = _Engine(JoinResult(joined=False, error="busy"), JoinResult(joined=True))
    call, _ = _call(engine)

    await call.connect()

    assert len(engine.joins) == 2
    await call.end()


@pytest.mark.asyncio
async def test_join_failure_after_all_attempts_is_a_transport_error():
    engine = _Engine(ConnectionError("ice failed"))
    call, resource = _call(engine)

    with pytest.raises(errors.TransportError):
        await call.connect()

    assert len(engine.joins) == 2
    assert resource.refs == 0
    assert engine.closed
    assert not call.connected


@pytest.mark.asyncio
async def test_end_is_idempotent():
    engine = _Engine()
    ends = _Ends()
    call, resource = _call(engine, ends)
    await call.connect()

    assert await call.end() is True
    assert await call.end() is False

    assert ends.calls == [("session-1", 0, VentSession.MANUAL_ENDED)]
    assert engine.left == 1
    assert resource.refs == 0
    assert call.end_reason == VentSession.MANUAL_ENDED


@pytest.mark.asyncio
async def test_plan_timer_auto_ends_the_session():
    engine = _Engine()
    ends = _Ends()
    call, _ = _call(engine, ends, duration_seconds=0.02)
    await call.connect()

    await wait_until(lambda: ends.calls)

    assert ends.calls[0][2] == VentSession.AUTO_ENDED
    assert call.ended
    assert engine.left == 1
    # 자동 종료 뒤 수동 종료는 no-op
    assert await call.end() is False


@pytest.mark.asyncio
async def test_manual_end_cancels_the_plan_timer():
    ends = _Ends()
    call, _ = _call(_Engine(), ends, duration_seconds=0.05)
    await call.connect()
    await call.end()

    await asyncio.sleep(0.08)
    assert [c[2] for c in ends.calls] == [VentSession.MANUAL_ENDED]


@pytest.mark.asyncio
async def test_elapsed_seconds_follow_the_clock():
    now = [100.0]
    ends = _Ends()
    call, _ = _call(_Engine(), ends, clock=lambda: now[0])
    await call.connect()

    now[0] = 412.9
    await call.end()

    assert ends.calls == [("session-1", 312, VentSession.MANUAL_ENDED)]


class _FlakyEnds(_Ends):
    """첫 failures 번은 StoreError."""

    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    async def __call__(self, session_id, duration_seconds, end_reason):
        if self.failures:
            self.failures -= 1
            raise errors.StoreError("database is locked")
        return await super().__call__(session_id, duration_seconds, end_reason)


@pytest.mark.asyncio
async def test_unknown_end_reason_leaves_the_call_running():
    engine = _Engine()
    ends = _Ends()
    call, resource = _call(engine, ends, duration_seconds=60)
    await call.connect()

    with pytest.raises(errors.ValidationError):
        await call.end("bogus")

    assert call.connected
    assert not call.ended
    assert ends.calls == []
    assert engine.left == 0
    assert resource.refs == 1

    assert await call.end() is True
    assert ends.calls == [("session-1", 0, VentSession.MANUAL_ENDED)]


@pytest.mark.asyncio
async def test_failed_session_end_can_be_retried():
    engine = _Engine()
    ends = _FlakyEnds()
    call, resource = _call(engine, ends, duration_seconds=60)
    await call.connect()

    with pytest.raises(errors.StoreError):
        await call.end()

    # 세션이 아직 ACTIVE 라서 통화도 타이머도 살아 있음
    assert not call.ended
    assert call.end_reason is None
    assert engine.left == 0
    assert resource.refs == 1

    assert await call.end() is True
    assert ends.calls == [("session-1", 0, VentSession.MANUAL_ENDED)]
    assert engine.left == 1
    assert resource.refs == 0


@pytest.mark.asyncio
async def test_plan_timer_is_rearmed_when_session_end_fails():
    engine = _Engine()
    ends = _FlakyEnds()
    call, _ = _call(engine, ends, duration_seconds=0.02)
    await call.connect()

    await wait_until(lambda: ends.calls)

    assert ends.calls == [("session-1", 0, VentSession.AUTO_ENDED)]
    assert call.ended
    assert call.end_reason == VentSession.AUTO_ENDED
    assert engine.left == 1


class _Response:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def test_token_client_posts_channel_and_uid(monkeypatch):
    seen = {}

    def fake_post(url, json=None, timeout=None):
        seen.update(url=url, json=json, timeout=timeout)
        return _Response(payload={"token": "abc"})

    monkeypatch.setattr(requests, "post", fake_post)

    token = VoiceTokenClient(url="http://tokens.test/token", timeout=10).fetch_token_sync("chan", "uid-1")

    assert token == "abc"
    assert seen == {
        "url": "http://tokens.test/token",
        "json": {"channelName": "chan", "uid": "uid-1", "role": "publisher", "expireTime": 3600},
        "timeout": 10,
    }


@pytest.mark.parametrize(
    "response",
    [
        _Response(status_code=500, text="boom"),
        _Response(payload={}),
        _Response(payload=None),
    ],
)
def test_token_client_bad_responses_are_transport_errors(monkeypatch, response):
    monkeypatch.setattr(requests, "post", lambda *a, **kw: response)

    with pytest.raises(errors.TransportError):
        VoiceTokenClient(url="http://tokens.test/token").fetch_token_sync("chan", "uid")


def test_token_client_timeout_is_a_transport_error(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "post", fake_post)

    with pytest.raises(errors.TransportError) as exc_info:
        VoiceTokenClient(url="http://tokens.test/token").fetch_token_sync("chan", "uid")
    assert "timed out" in exc_info.value.message


def test_token_client_without_url_joins_tokenless():
    assert VoiceTokenClient(url="").fetch_token_sync("chan", "uid") is None
