# ventbox/calls/voice_call.py
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from django.conf import settings

from ventbox.calls.transport import JoinResult, VoiceTokenClient, voice_engines
from ventbox.common import errors
from ventbox.common.backoff import BackoffPolicy
from ventbox.common.shared import SharedResource
from ventbox.matches.models import VentSession
from ventbox.matches.plans import plan_duration_seconds
from ventbox.matches.state_machine import MatchHandoff
from ventbox.matches.store import MatchingStore

logger = logging.getLogger(__name__)

EndSessionFn = Callable[[str, int, str], Awaitable[object]]


def join_policy() -> BackoffPolicy:
    return BackoffPolicy(
        max_attempts=int(getattr(settings, "VOICE_JOIN_ATTEMPTS", 2)),
        base_delay=1.0,
        multiplier=2.0,
        max_delay=10.0,
    )


class VoiceCall:
    """
    매칭 후 한 통화.

    - connect(): 토큰 받고 채널 join (최대 VOICE_JOIN_ATTEMPTS 번), 실패면 TransportError
    - plan 시간이 지나면 자동 종료 (auto-ended)
    - end(): 수동 종료 (manual-ended). 두 번째 호출부터는 no-op
      세션 종료 기록이 실패하면 통화는 그대로 두고 타이머를 다시 건다
    """

    def __init__(
        self,
        handoff: MatchHandoff,
        participant_id: str,
        *,
        engines: Optional[SharedResource] = None,
        token_client: Optional[VoiceTokenClient] = None,
        end_session: Optional[EndSessionFn] = None,
        policy: Optional[BackoffPolicy] = None,
        duration_seconds: Optional[float] = None,
        join_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.handoff = handoff
        self.participant_id = str(participant_id)
        self._engines = engines or voice_engines
        self._token_client = token_client or VoiceTokenClient()
        self._end_session = end_session or MatchingStore().end_session
        self._policy = policy or join_policy()
        self._duration = duration_seconds if duration_seconds is not None else plan_duration_seconds(handoff.plan)
        self._join_timeout = join_timeout or float(getattr(settings, "VOICE_TOKEN_TIMEOUT_SECONDS", 10))
        self._clock = clock

        self._engine = None
        self._result: Optional[JoinResult] = None
        self._started_at: Optional[float] = None
        self._timer: Optional[asyncio.Task] = None
        self._ended = False
        self.end_reason: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._result is not None and self._result.joined and not self._ended

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def elapsed_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return int(self._clock() - self._started_at)

    @property
    def time_remaining(self) -> int:
        return max(0, int(self._duration) - self.elapsed_seconds)

    async def connect(self) -> JoinResult:
        if self._result is not None:
            return self._result
        if self._ended:
            raise errors.TransportError("call already ended")

        channel_id = self.handoff.channel_id
        self._engine = await self._engines.acquire()
        try:
            token = await self._token_client.fetch_token(channel_id, self.participant_id)
            async for attempt in self._policy.retrying(retry_on=(errors.TransportError,)):
                with attempt:
                    result = await self._join_once(channel_id, token)
        except errors.TransportError:
            logger.warning("voice join failed for %s on %s", self.participant_id, channel_id, exc_info=True)
            self._engine = None
            await self._engines.release()
            raise

        self._result = result
        self._started_at = self._clock()
        self._timer = asyncio.create_task(self._auto_end_after(self._duration))
        logger.info("joined voice channel %s (session=%s)", channel_id, self.handoff.session_id)
        return result

    async def _join_once(self, channel_id: str, token: Optional[str]) -> JoinResult:
        try:
            result = await asyncio.wait_for(
                self._engine.join_channel(channel_id, token=token, uid=self.participant_id),
                timeout=self._join_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise errors.TransportError("Voice channel join timed out") from exc
        except errors.TransportError:
            raise
        except Exception as exc:
            raise errors.TransportError(f"Voice channel join failed: {exc}") from exc

        if not result.joined:
            raise errors.TransportError(result.error or "Could not join voice channel")
        return result

    async def end(self, reason: str = VentSession.MANUAL_ENDED) -> bool:
        if reason not in (VentSession.MANUAL_ENDED, VentSession.AUTO_ENDED):
            raise errors.ValidationError(f"unknown end reason: {reason}")
        if self._ended:
            return False
        self._ended = True

        timer, self._timer = self._timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

        elapsed = self.elapsed_seconds
        try:
            await self._end_session(self.handoff.session_id, elapsed, reason)
        except Exception:
            # 세션이 ACTIVE 로 남으니 통화와 타이머를 되살린다
            self._ended = False
            self._rearm_timer()
            raise
        self.end_reason = reason

        engine, self._engine = self._engine, None
        if engine is not None:
            try:
                await engine.leave_channel()
            except Exception:
                logger.warning("leave_channel failed (%s)", self.handoff.channel_id, exc_info=True)
            await self._engines.release()

        logger.info("call ended %s (%s, %ss)", self.handoff.session_id, reason, elapsed)
        return True

    def _rearm_timer(self) -> None:
        if self._started_at is None:
            return
        delay = max(self.time_remaining, self._policy.delay_for(0))
        self._timer = asyncio.create_task(self._auto_end_after(delay))

    async def _auto_end_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        try:
            await self.end(VentSession.AUTO_ENDED)
        except errors.VentboxError:
            logger.error("auto end failed (session=%s)", self.handoff.session_id, exc_info=True)
