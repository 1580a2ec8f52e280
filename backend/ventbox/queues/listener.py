# ventbox/queues/listener.py
"""
Match Listener: 반대 역할의 WAITING 후보 목록을 실시간으로 받아보는 스트림.

    stream = await subscribe("listener", exclude_participant=me)
    async for candidates in stream:      # 오래된 순 list[QueueEntry]
        ...
    await stream.cancel()

- 첫 값은 구독 시점 스냅샷
- 이후 queue.<role> 그룹에 변경 알림이 올 때마다 다시 조회한 스냅샷
- 같은 후보가 여러 번 올 수 있음 (소비하는 쪽이 멱등이어야 함)
- 빈 목록도 정상 값
- cancel() 이후로는 더 이상 값을 내보내지 않음
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import DatabaseError

from ventbox.common import errors
from ventbox.queues import admission
from ventbox.queues.events import queue_group
from ventbox.queues.models import QueueEntry

logger = logging.getLogger(__name__)

FetchFn = Callable[[str, int, Optional[str]], Awaitable[List[QueueEntry]]]


@database_sync_to_async
def _fetch_from_db(role: str, window: int, exclude_participant: Optional[str]) -> List[QueueEntry]:
    return admission.fetch_candidates(role, window=window, exclude_participant=exclude_participant)


def candidate_window() -> int:
    return int(getattr(settings, "QUEUE_CANDIDATE_WINDOW", 10))


class CandidateStream:
    def __init__(
        self,
        role: str,
        *,
        exclude_participant: Optional[str] = None,
        window: Optional[int] = None,
        channel_layer=None,
        fetch: Optional[FetchFn] = None,
    ):
        self.role = role
        self.exclude_participant = exclude_participant
        self.window = window or candidate_window()
        self._layer = channel_layer
        self._fetch = fetch or _fetch_from_db

        self._channel_name = None
        self._primed = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> "CandidateStream":
        if self._layer is None:
            self._layer = get_channel_layer()
        if self._layer is None:
            raise errors.SubscriptionError("channel layer is not configured")

        try:
            self._channel_name = await self._layer.new_channel()
            await self._layer.group_add(queue_group(self.role), self._channel_name)
        except Exception as exc:
            raise errors.SubscriptionError(f"Failed to set up matching: {exc}") from exc

        logger.debug("subscribed to %s (%s)", queue_group(self.role), self._channel_name)
        return self

    async def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._layer is None or self._channel_name is None:
            return
        try:
            await self._layer.group_discard(queue_group(self.role), self._channel_name)
        except Exception:
            logger.warning("group_discard failed (%s)", self._channel_name, exc_info=True)

    def __aiter__(self):
        return self

    async def __anext__(self) -> List[QueueEntry]:
        if self._closed:
            raise StopAsyncIteration

        if not self._primed:
            self._primed = True
            return await self._snapshot()

        try:
            await self._layer.receive(self._channel_name)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if self._closed:
                raise StopAsyncIteration
            raise errors.SubscriptionError(f"Failed to get real-time updates for matching: {exc}") from exc

        if self._closed:
            raise StopAsyncIteration
        return await self._snapshot()

    async def __aenter__(self):
        if self._channel_name is None:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.cancel()

    async def _snapshot(self) -> List[QueueEntry]:
        try:
            candidates = await self._fetch(self.role, self.window, self.exclude_participant)
        except DatabaseError as exc:
            raise errors.SubscriptionError(f"Failed to load queue candidates: {exc}") from exc

        if self._closed:
            raise StopAsyncIteration
        return list(candidates)


async def subscribe(
    role: str,
    *,
    exclude_participant: Optional[str] = None,
    window: Optional[int] = None,
    channel_layer=None,
    fetch: Optional[FetchFn] = None,
) -> CandidateStream:
    stream = CandidateStream(
        role,
        exclude_participant=exclude_participant,
        window=window,
        channel_layer=channel_layer,
        fetch=fetch,
    )
    return await stream.open()
