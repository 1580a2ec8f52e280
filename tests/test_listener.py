"""Tests for the live candidate stream."""
import asyncio

import pytest
from channels.layers import InMemoryChannelLayer
from django.db import DatabaseError

from ventbox.common import errors
from ventbox.queues.events import QUEUE_CHANGED, queue_group
from ventbox.queues.listener import subscribe
from ventbox.queues.roles import LISTENER


class _Snapshots:
    """호출될 때마다 다음 스냅샷을 돌려주는 fetch."""

    def __init__(self, *snapshots):
        self._snapshots = list(snapshots)
        self.calls = []

    async def __call__(self, role, window, exclude_participant):
        self.calls.append((role, window, exclude_participant))
        if len(self._snapshots) > 1:
            return self._snapshots.pop(0)
        return self._snapshots[0]


class _BrokenLayer:
    async def new_channel(self):
        raise ConnectionError("redis unavailable")


@pytest.mark.asyncio
async def test_first_value_is_the_current_snapshot():
    layer = InMemoryChannelLayer()
    fetch = _Snapshots(["a", "b"])

    stream = await subscribe(LISTENER, exclude_participant="me", window=5, channel_layer=layer, fetch=fetch)

    assert await stream.__anext__() == ["a", "b"]
    assert fetch.calls == [(LISTENER, 5, "me")]
    await stream.cancel()


@pytest.mark.asyncio
async def test_each_change_notification_yields_a_fresh_snapshot():
    layer = InMemoryChannelLayer()
    fetch = _Snapshots([], ["a"], [])

    stream = await subscribe(LISTENER, channel_layer=layer, fetch=fetch)
    assert await stream.__anext__() == []

    await layer.group_send(queue_group(LISTENER), {"type": QUEUE_CHANGED, "role": LISTENER})
    assert await asyncio.wait_for(stream.__anext__(), 1) == ["a"]

    # 빈 목록도 정상 값
    await layer.group_send(queue_group(LISTENER), {"type": QUEUE_CHANGED, "role": LISTENER})
    assert await asyncio.wait_for(stream.__anext__(), 1) == []

    await stream.cancel()


@pytest.mark.asyncio
async def test_cancel_stops_iteration_and_leaves_the_group():
    layer = InMemoryChannelLayer()
    fetch = _Snapshots(["a"])

    async with await subscribe(LISTENER, channel_layer=layer, fetch=fetch) as stream:
        assert await stream.__anext__() == ["a"]

    assert stream.closed
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()

    # 그룹에서 빠졌으므로 알림이 와도 아무 일 없음
    await layer.group_send(queue_group(LISTENER), {"type": QUEUE_CHANGED, "role": LISTENER})
    assert fetch.calls == [(LISTENER, 10, None)]

    # 여러 번 cancel 해도 됨
    await stream.cancel()


@pytest.mark.asyncio
async def test_async_for_consumer_sees_updates_until_cancelled():
    layer = InMemoryChannelLayer()
    fetch = _Snapshots(["first"], ["second"])
    stream = await subscribe(LISTENER, channel_layer=layer, fetch=fetch)
    seen = []

    async def consume():
        async for candidates in stream:
            seen.append(candidates)
            if len(seen) == 2:
                await stream.cancel()

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    await layer.group_send(queue_group(LISTENER), {"type": QUEUE_CHANGED, "role": LISTENER})
    await asyncio.wait_for(task, 1)

    assert seen == [["first"], ["second"]]


@pytest.mark.asyncio
async def test_store_failure_is_a_subscription_error():
    async def failing_fetch(role, window, exclude_participant):
        raise DatabaseError("no such table")

    stream = await subscribe(LISTENER, channel_layer=InMemoryChannelLayer(), fetch=failing_fetch)

    with pytest.raises(errors.SubscriptionError):
        await stream.__anext__()
    await stream.cancel()


@pytest.mark.asyncio
async def test_layer_failure_on_subscribe_is_a_subscription_error():
    with pytest.raises(errors.SubscriptionError) as exc_info:
        await subscribe(LISTENER, channel_layer=_BrokenLayer(), fetch=_Snapshots([]))

    assert exc_info.value.retryable is True
