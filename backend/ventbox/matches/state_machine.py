# ventbox/matches/state_machine.py
"""
클라이언트 한 명의 매칭 진행기.

    IDLE -> SEARCHING -> FOUND   (세션으로 넘어감)
                      -> FAILED  (시간 초과, retry() 가능)
    stop(): SEARCHING / FAILED / 어디서든 -> IDLE

중앙 매칭 서버는 없다. 각 클라이언트가 반대 역할의 대기열을 보고 있다가
가장 오래된 후보로 세션 생성을 시도하고, 누가 이기는지는 세션 생성
트랜잭션(services.create_session)이 정한다. 진 쪽은 ConflictError 를 받고
다시 SEARCHING 으로 돌아가 계속 기다린다.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from django.conf import settings

from ventbox.common import errors
from ventbox.common.backoff import BackoffPolicy, match_retry_policy
from ventbox.matches.models import VentSession
from ventbox.matches.store import MatchingStore
from ventbox.queues.roles import Listener, Role, Venter, opposite_kind, validate_role

logger = logging.getLogger(__name__)


class MatchingStatus(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    FOUND = "found"
    FAILED = "failed"


@dataclass(frozen=True)
class ParticipantIdentity:
    participant_id: Optional[str]
    is_authenticated: bool


@dataclass(frozen=True)
class MatchHandoff:
    """매칭 성공 시 voice 세션 쪽으로 넘기는 값."""

    channel_id: str
    session_id: str
    plan: str
    vent_message: str
    is_initiating_participant: bool

    def as_payload(self) -> dict:
        return {
            "channelId": self.channel_id,
            "sessionId": self.session_id,
            "plan": self.plan,
            "ventMessage": self.vent_message,
            "isInitiatingParticipant": self.is_initiating_participant,
        }


@dataclass(frozen=True)
class MatchingAlert:
    code: str
    title: str
    message: str
    retryable: bool = False

    @classmethod
    def from_error(cls, exc: errors.VentboxError, message: Optional[str] = None) -> "MatchingAlert":
        return cls(code=exc.code, title=exc.title, message=message or exc.message, retryable=exc.retryable)

    def as_payload(self) -> dict:
        return {
            "code": self.code,
            "title": self.title,
            "message": self.message,
            "retryable": self.retryable,
        }


async def _noop(*_args, **_kwargs):
    return None


class MatchingStateMachine:
    def __init__(
        self,
        participant: ParticipantIdentity,
        *,
        store=None,
        on_match: Callable[[MatchHandoff], Awaitable[None]] = None,
        on_alert: Callable[[MatchingAlert], Awaitable[None]] = None,
        on_status: Callable[[MatchingStatus], Awaitable[None]] = None,
        no_match_timeout: Optional[float] = None,
        retry_policy: Optional[BackoffPolicy] = None,
    ):
        self.participant = participant
        self._store = store or MatchingStore()
        self._on_match = on_match or _noop
        self._on_alert = on_alert or _noop
        self._on_status = on_status or _noop

        if no_match_timeout is None:
            no_match_timeout = getattr(settings, "MATCH_NO_MATCH_TIMEOUT_SECONDS", 300)
        self._no_match_timeout = no_match_timeout
        self._retry_policy = retry_policy or match_retry_policy(
            getattr(settings, "MATCH_RETRY_DELAY_SECONDS", 2)
        )

        self._status = MatchingStatus.IDLE
        self._role: Optional[Role] = None
        self._entry = None  # 내 queue entry. 로컬 메모리에만 있음
        self._stream = None
        self._reader: Optional[asyncio.Task] = None
        self._timeout_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._attempt = 0
        self._failures = 0
        self._handoff: Optional[MatchHandoff] = None
        self._background = set()

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    @property
    def status(self) -> MatchingStatus:
        return self._status

    @property
    def role(self) -> Optional[Role]:
        return self._role

    @property
    def own_entry(self):
        return self._entry

    @property
    def handoff(self) -> Optional[MatchHandoff]:
        return self._handoff

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def start(self, role: Role) -> bool:
        participant_id = self.participant.participant_id
        if not self.participant.is_authenticated or not participant_id:
            await self._alert(errors.AuthenticationRequired("Please sign in to continue."))
            return False

        if self._status is MatchingStatus.SEARCHING:
            await self._emit_alert(
                MatchingAlert("ALREADY_MATCHING", "Already Matching", "You are already in the matching queue.")
            )
            return False

        try:
            role = validate_role(role)
        except errors.ValidationError as exc:
            await self._alert(exc)
            return False

        # 여기서부터 SEARCHING. 아래 await 중에 들어온 start() 는 위에서 거절됨
        self._attempt += 1
        attempt = self._attempt
        self._status = MatchingStatus.SEARCHING
        self._role = role
        self._handoff = None

        # 이전 시도의 잔여물 (timer, 구독, queue entry) 정리
        await self._release()

        try:
            await self._store.clear_participant(participant_id)
            entry = await self._store.enqueue(participant_id, role)
            if not self._is_current(attempt):
                # 등록 도중 stop() 됨
                await self._store.dequeue(entry.entry_id)
                return False
            self._entry = entry

            stream = await self._store.subscribe(opposite_kind(role), exclude_participant=participant_id)
            if not self._is_current(attempt):
                await stream.cancel()
                return False
            self._stream = stream
        except Exception as exc:
            logger.warning("start matching failed for %s", participant_id, exc_info=True)
            if isinstance(exc, errors.VentboxError):
                await self._alert(exc, message=f"Failed to start matching: {exc.message}. Please try again.")
            else:
                await self._emit_alert(
                    MatchingAlert("INTERNAL_ERROR", "Error", "Failed to start matching. Please try again.", True)
                )
            await self.stop()
            return False

        self._reader = asyncio.create_task(self._read(stream, attempt))
        self._timeout_task = asyncio.create_task(self._expire_after(self._no_match_timeout))

        logger.info("matching started for %s (entry=%s)", participant_id, entry.entry_id)
        await self._emit_status()
        return True

    async def stop(self) -> None:
        """
        구독, timeout/retry 타이머, 내 queue entry 정리 후 IDLE.
        로컬 상태는 첫 await 전에 초기화된다. 여러 번 불러도 됨.
        """
        previous = self._status
        self._attempt += 1
        self._status = MatchingStatus.IDLE
        self._role = None

        await self._release()

        if previous is not MatchingStatus.IDLE:
            logger.info("matching stopped for %s", self.participant.participant_id)
            await self._emit_status()

    def retry(self) -> bool:
        """FAILED 에서만. 짧은 backoff 뒤 같은 역할로 다시 start()."""
        if self._status is not MatchingStatus.FAILED or self._role is None:
            return False
        if self._retry_task is not None:
            return False

        delay = self._retry_policy.delay_for(self._failures - 1)
        self._retry_task = asyncio.create_task(self._retry_after(delay))
        logger.info("matching retry in %.1fs for %s", delay, self.participant.participant_id)
        return True

    async def on_candidate_found(self, candidate) -> bool:
        # SEARCHING 일 때만. 들어오자마자 FOUND 로 바꿔서 두 번째 알림은 여기서 끊김
        if self._status is not MatchingStatus.SEARCHING or self._entry is None:
            return False
        self._status = MatchingStatus.FOUND

        attempt, role, entry = self._attempt, self._role, self._entry

        creating = asyncio.ensure_future(self._store.create_session(**self._session_args(role, entry, candidate)))
        try:
            session = await asyncio.shield(creating)
        except asyncio.CancelledError:
            # stop() 으로 reader 가 취소돼도 트랜잭션은 끝까지 감. 만들어졌으면 닫는다
            creating.add_done_callback(self._discard_when_created)
            raise
        except errors.ConflictError:
            return await self._recover_from_conflict(entry, attempt)
        except Exception as exc:
            if not self._is_current(attempt):
                return False
            logger.warning("create_session failed", exc_info=True)
            if isinstance(exc, errors.VentboxError):
                await self._alert(exc, message="Failed to connect with match. Please try again.")
            else:
                await self._emit_alert(
                    MatchingAlert("INTERNAL_ERROR", "Error", "Failed to connect with match. Please try again.", True)
                )
            await self.stop()
            return False

        if not self._is_current(attempt) or self._status is not MatchingStatus.FOUND:
            # 생성 중에 stop() 됨. 세션을 열어두면 상대만 기다리게 되므로 바로 닫는다
            await self._discard_session(session)
            return False

        await self._complete(session, initiating=True)
        return True

    # ------------------------------------------------------------------
    # internal
    # ------------------------------------------------------------------

    def _is_current(self, attempt: int) -> bool:
        return attempt == self._attempt

    def _session_args(self, role: Role, entry, candidate) -> dict:
        participant_id = str(self.participant.participant_id)
        if isinstance(role, Venter):
            return {
                "venter_id": participant_id,
                "listener_id": candidate.participant_id,
                "venter_entry_id": entry.entry_id,
                "listener_entry_id": candidate.entry_id,
                "vent_message": role.vent_message,
                "plan": role.plan,
            }
        if isinstance(role, Listener):
            return {
                "venter_id": candidate.participant_id,
                "listener_id": participant_id,
                "venter_entry_id": candidate.entry_id,
                "listener_entry_id": entry.entry_id,
                "vent_message": candidate.vent_message,
                "plan": candidate.plan,
            }
        raise TypeError(f"unknown role: {role!r}")

    async def _read(self, stream, attempt: int) -> None:
        try:
            async for candidates in stream:
                if not self._is_current(attempt):
                    break
                await self._handle_candidates(candidates)
        except asyncio.CancelledError:
            raise
        except errors.VentboxError as exc:
            if not self._is_current(attempt):
                return
            logger.warning("candidate subscription failed", exc_info=True)
            await self._alert(exc)
            await self.stop()

    async def _handle_candidates(self, candidates) -> None:
        if self._status is not MatchingStatus.SEARCHING or self._entry is None:
            return

        attempt, entry = self._attempt, self._entry

        # 상대가 먼저 내 entry 로 세션을 만들었는지
        session = await self._store.matched_session_for(entry.entry_id)
        if session is not None:
            if self._is_current(attempt) and self._status is MatchingStatus.SEARCHING:
                self._status = MatchingStatus.FOUND
                await self._complete(session, initiating=False)
            return

        me = str(self.participant.participant_id)
        for candidate in candidates:
            if candidate.participant_id == me:
                continue
            # 가장 오래된 후보 하나만 시도 (FIFO, best-effort)
            await self.on_candidate_found(candidate)
            return

    async def _recover_from_conflict(self, entry, attempt: int) -> bool:
        if not self._is_current(attempt) or self._status is not MatchingStatus.FOUND:
            return False

        # 진 이유가 "내 entry 가 상대 세션에 들어가서" 일 수도 있음
        try:
            session = await self._store.matched_session_for(entry.entry_id)
        except errors.VentboxError as exc:
            if self._is_current(attempt):
                await self._alert(exc)
                await self.stop()
            return False

        if not self._is_current(attempt) or self._status is not MatchingStatus.FOUND:
            return False

        if session is not None:
            await self._complete(session, initiating=False)
            return True

        logger.info("lost matching race for %s, keep listening", self.participant.participant_id)
        self._status = MatchingStatus.SEARCHING
        if self._timeout_task is None:
            # 생성 시도 중에 대기 시간이 끝났음
            self._timeout_task = asyncio.create_task(self._expire_after(0))
        return False

    async def _complete(self, session, *, initiating: bool) -> None:
        self._status = MatchingStatus.FOUND
        self._failures = 0
        self._handoff = MatchHandoff(
            channel_id=session.channel_id,
            session_id=str(session.session_id),
            plan=session.plan,
            vent_message=session.vent_message,
            is_initiating_participant=initiating,
        )
        handoff = self._handoff

        # 내 entry / 구독 / 타이머 정리 후 넘김
        await self._release()

        logger.info(
            "matched %s into session %s (initiating=%s)",
            self.participant.participant_id,
            handoff.session_id,
            initiating,
        )
        await self._emit_status()
        try:
            await self._on_match(handoff)
        except Exception:
            logger.error("match hand-off callback failed", exc_info=True)

    def _discard_when_created(self, creating: asyncio.Future) -> None:
        if creating.cancelled() or creating.exception() is not None:
            return
        task = asyncio.ensure_future(self._discard_session(creating.result()))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _discard_session(self, session) -> None:
        try:
            await self._store.end_session(session.session_id, 0, VentSession.MANUAL_ENDED)
        except errors.VentboxError:
            logger.warning("could not close abandoned session %s", session.session_id, exc_info=True)

    async def _expire_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        self._timeout_task = None
        if self._status is not MatchingStatus.SEARCHING:
            return

        # 상대 세션이 이미 커밋됐는데 알림을 아직 못 읽었을 수 있음
        attempt, entry = self._attempt, self._entry
        if entry is not None:
            try:
                session = await self._store.matched_session_for(entry.entry_id)
            except errors.VentboxError:
                logger.warning("matched session check on timeout failed", exc_info=True)
                session = None
            if not self._is_current(attempt) or self._status is not MatchingStatus.SEARCHING:
                return
            if session is not None:
                await self._complete(session, initiating=False)
                return

        self._attempt += 1
        self._status = MatchingStatus.FAILED
        self._failures += 1
        await self._release()

        logger.info("no match within %ss for %s", self._no_match_timeout, self.participant.participant_id)
        await self._emit_status()
        await self._alert(
            errors.MatchTimeoutError("We couldn't find a match for you at this moment. Please try again later.")
        )

    async def _retry_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return

        self._retry_task = None
        if self._status is not MatchingStatus.FAILED or self._role is None:
            return
        await self.start(self._role)

    async def _release(self) -> None:
        current = asyncio.current_task()
        tasks = (self._timeout_task, self._retry_task, self._reader)
        self._timeout_task = self._retry_task = self._reader = None
        for task in tasks:
            if task is not None and task is not current and not task.done():
                task.cancel()

        stream, self._stream = self._stream, None
        entry, self._entry = self._entry, None

        if stream is not None:
            try:
                await stream.cancel()
            except Exception:
                logger.warning("closing candidate stream failed", exc_info=True)

        if entry is not None:
            try:
                await self._store.dequeue(entry.entry_id)
            except errors.VentboxError:
                # 남은 entry 는 reclaim_stale 이 치운다
                logger.warning("dequeue on cleanup failed (entry=%s)", entry.entry_id, exc_info=True)

    async def _emit_status(self) -> None:
        try:
            await self._on_status(self._status)
        except Exception:
            logger.error("status callback failed", exc_info=True)

    async def _alert(self, exc: errors.VentboxError, message: Optional[str] = None) -> None:
        await self._emit_alert(MatchingAlert.from_error(exc, message))

    async def _emit_alert(self, alert: MatchingAlert) -> None:
        try:
            await self._on_alert(alert)
        except Exception:
            logger.error("alert callback failed", exc_info=True)
