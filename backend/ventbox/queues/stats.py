# ventbox/queues/stats.py
"""
대기열 통계 (venter 대기 수, listener 대기 수, 진행 중 세션 수).

화면 참고용이라 실패해도 raise 하지 않고 0 으로 채운 값 + error 를 돌려준다.

- 동시에 여러 화면이 요청해도 네트워크 호출은 하나만 (in-flight 공유)
- 주기적으로 갱신 (기본 30초), 갱신 중에는 마지막 정상값 제공
- 실패 시 BackoffPolicy 대로 재시도 후 0 값
- redis 문서 stats:queue 로 프로세스 간 공유
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import redis
from asgiref.sync import sync_to_async
from channels.db import database_sync_to_async
from django.conf import settings
from django.utils import timezone

from ventbox.common.backoff import STATS_BACKOFF, BackoffPolicy
from ventbox.common.redis_client import get_redis
from ventbox.common.shared import SharedResource
from ventbox.matches.models import VentSession
from ventbox.queues.models import QueueEntry
from ventbox.queues.roles import LISTENER, VENTER

logger = logging.getLogger(__name__)

STATS_CACHE_KEY = "stats:queue"


@dataclass(frozen=True)
class QueueStats:
    venters_waiting: int = 0
    listeners_waiting: int = 0
    active_sessions: int = 0
    last_updated: str = ""
    error: Optional[str] = None

    @classmethod
    def fallback(cls, error: str) -> "QueueStats":
        return cls(last_updated=timezone.now().isoformat(), error=error)

    @classmethod
    def from_payload(cls, data: dict) -> "QueueStats":
        return cls(
            venters_waiting=int(data.get("ventersWaiting") or 0),
            listeners_waiting=int(data.get("listenersWaiting") or 0),
            active_sessions=int(data.get("activeSessions") or 0),
            last_updated=data.get("lastUpdated") or "",
            error=data.get("error"),
        )

    def as_payload(self) -> dict:
        payload = {
            "ventersWaiting": self.venters_waiting,
            "listenersWaiting": self.listeners_waiting,
            "activeSessions": self.active_sessions,
            "lastUpdated": self.last_updated,
        }
        if self.error:
            payload["error"] = self.error
        return payload


def refresh_interval() -> int:
    return int(getattr(settings, "QUEUE_STATS_REFRESH_SECONDS", 30))


# ---- count queries ----

def count_waiting(role: str) -> int:
    return QueueEntry.objects.filter(role=role, status=QueueEntry.WAITING).count()


def count_active_sessions() -> int:
    return VentSession.objects.filter(status=VentSession.ACTIVE).count()


_count_waiting = database_sync_to_async(count_waiting)
_count_active_sessions = database_sync_to_async(count_active_sessions)


async def count_queue_stats() -> QueueStats:
    venters, listeners, active = await asyncio.gather(
        _count_waiting(VENTER),
        _count_waiting(LISTENER),
        _count_active_sessions(),
    )
    return QueueStats(
        venters_waiting=venters,
        listeners_waiting=listeners,
        active_sessions=active,
        last_updated=timezone.now().isoformat(),
    )


def get_queue_stats() -> QueueStats:
    """sync 버전 (HTTP view 용). 재시도 없이 한 번, 실패 시 0 값."""
    try:
        return QueueStats(
            venters_waiting=count_waiting(VENTER),
            listeners_waiting=count_waiting(LISTENER),
            active_sessions=count_active_sessions(),
            last_updated=timezone.now().isoformat(),
        )
    except Exception as exc:
        logger.warning("queue stats query failed", exc_info=True)
        return QueueStats.fallback(str(exc))


# ---- cross-process cache ----

class StatsCache:
    def __init__(self, client=None, ttl: Optional[int] = None):
        self._client = client
        self.ttl = ttl or refresh_interval()

    def _redis(self):
        if self._client is None:
            self._client = get_redis()
        return self._client

    def get(self) -> Optional[QueueStats]:
        try:
            raw = self._redis().get(STATS_CACHE_KEY)
        except redis.RedisError:
            logger.warning("stats cache read failed", exc_info=True)
            return None
        if not raw:
            return None
        try:
            return QueueStats.from_payload(json.loads(raw))
        except (TypeError, ValueError):
            return None

    def set(self, stats: QueueStats) -> None:
        try:
            self._redis().set(STATS_CACHE_KEY, json.dumps(stats.as_payload()), ex=self.ttl)
        except redis.RedisError:
            logger.warning("stats cache write failed", exc_info=True)


# ---- aggregator ----

class QueueStatsAggregator:
    def __init__(
        self,
        *,
        counter: Callable[[], Awaitable[QueueStats]] = None,
        cache: Optional[StatsCache] = None,
        policy: BackoffPolicy = STATS_BACKOFF,
        interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._counter = counter or count_queue_stats
        self._cache = cache
        self._policy = policy
        self._interval = interval if interval is not None else refresh_interval()
        self._clock = clock

        self._last: Optional[QueueStats] = None
        self._last_at: Optional[float] = None
        self._inflight: Optional[asyncio.Future] = None  # fetch-in-progress
        self._refresher: Optional[asyncio.Task] = None

    @property
    def last_good(self) -> Optional[QueueStats]:
        return self._last

    @property
    def fetching(self) -> bool:
        return self._inflight is not None

    def _fresh(self) -> bool:
        return self._last_at is not None and (self._clock() - self._last_at) < self._interval

    async def get_stats(self) -> QueueStats:
        if self._last is not None and (self._fresh() or self._inflight is not None):
            return self._last
        return await self.refresh()

    async def refresh(self) -> QueueStats:
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load())
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, fut) -> None:
        if self._inflight is fut:
            self._inflight = None

    async def _load(self) -> QueueStats:
        if self._cache is not None:
            cached = await sync_to_async(self._cache.get)()
            if cached is not None and not cached.error:
                self._remember(cached)
                return cached

        try:
            async for attempt in self._policy.retrying():
                with attempt:
                    stats = await self._counter()
        except Exception as exc:
            logger.warning("queue stats fetch failed after %d attempts", self._policy.max_attempts, exc_info=True)
            return QueueStats.fallback(str(exc))

        self._remember(stats)
        if self._cache is not None:
            await sync_to_async(self._cache.set)(stats)
        return stats

    def _remember(self, stats: QueueStats) -> None:
        self._last = stats
        self._last_at = self._clock()

    # ---- periodic refresh ----

    def start(self) -> None:
        if self._refresher is None:
            self._refresher = asyncio.create_task(self._refresh_loop())

    async def _refresh_loop(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self._interval)

    async def close(self) -> None:
        task, self._refresher = self._refresher, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


async def _open_aggregator() -> QueueStatsAggregator:
    aggregator = QueueStatsAggregator(cache=StatsCache())
    aggregator.start()
    return aggregator


async def _close_aggregator(aggregator: QueueStatsAggregator) -> None:
    await aggregator.close()


# 프로세스 전체에서 하나. 화면(소비자)마다 acquire/release
stats_aggregators = SharedResource("queue-stats", _open_aggregator, _close_aggregator)


def estimate_wait(stats: QueueStats, role_kind: str) -> dict:
    """반대 역할 대기 수로 대기 예상 문구."""
    if role_kind == LISTENER:
        waiting = stats.venters_waiting
        if waiting > 0:
            noun = "person" if waiting == 1 else "people"
            return {"waiting": waiting, "message": f"{waiting} {noun} waiting - Match likely soon!"}
        return {"waiting": 0, "message": "Waiting for someone to vent..."}

    if role_kind == VENTER:
        waiting = stats.listeners_waiting
        if waiting > 0:
            noun = "listener" if waiting == 1 else "listeners"
            return {"waiting": waiting, "message": f"{waiting} {noun} available - Match likely soon!"}
        return {"waiting": 0, "message": "Waiting for a listener..."}

    raise ValueError(f"unknown role: {role_kind}")
