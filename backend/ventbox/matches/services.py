# ventbox/matches/services.py
import logging
import secrets
import time

from django.db import DatabaseError, transaction
from django.utils import timezone

from ventbox.common import errors
from ventbox.matches.models import VentSession
from ventbox.matches.plans import DEFAULT_PLAN
from ventbox.queues.events import notify_queue_changed
from ventbox.queues.models import QueueEntry
from ventbox.queues.roles import LISTENER, VENTER

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def generate_channel_id() -> str:
    # ventbox_<ms timestamp base36>_<12 hex>
    return f"ventbox_{_base36(int(time.time() * 1000))}_{secrets.token_hex(6)}"


@transaction.atomic
def create_session(
    *,
    venter_id: str,
    listener_id: str,
    venter_entry_id,
    listener_entry_id,
    vent_message: str,
    plan: str,
) -> VentSession:
    """
    매칭 확정. 전부 하나의 트랜잭션:
      1) 두 queue entry 가 아직 WAITING 인지 확인 (row lock)
      2) channel id 발급
      3) ACTIVE 세션 insert
      4) 두 entry 를 MATCHED + session_id 도장

    두 entry 중 하나라도 WAITING 이 아니면 ConflictError.
    트랜잭션 안에서 raise 하므로 세션 insert 도 같이 롤백된다.
    (같은 entry 로 동시에 여러 클라이언트가 시도해도 성공은 1건)
    """
    wanted = (str(venter_entry_id), str(listener_entry_id))

    # select_for_update: postgres 에서 경쟁자를 커밋까지 대기시킴
    locked = {
        str(e.entry_id): e
        for e in QueueEntry.objects.select_for_update().filter(entry_id__in=wanted)
    }
    stale = [eid for eid in wanted if eid not in locked or not locked[eid].is_waiting]
    if stale:
        logger.info("create_session conflict: entries no longer waiting %s", stale)
        raise errors.ConflictError(stale_entry_ids=stale)

    venter_entry = locked[wanted[0]]
    listener_entry = locked[wanted[1]]
    if venter_entry.role != VENTER or listener_entry.role != LISTENER:
        raise errors.ValidationError("queue entries do not form a venter/listener pair")
    if venter_entry.participant_id != str(venter_id) or listener_entry.participant_id != str(listener_id):
        raise errors.ValidationError("queue entries do not belong to the given participants")

    now = timezone.now()
    session = VentSession.objects.create(
        venter_id=str(venter_id),
        listener_id=str(listener_id),
        channel_id=generate_channel_id(),
        vent_message=vent_message or "",
        plan=plan or DEFAULT_PLAN.name,
        status=VentSession.ACTIVE,
        started_at=now,
        venter_queue_entry_id=venter_entry.entry_id,
        listener_queue_entry_id=listener_entry.entry_id,
    )

    # 조건부 update: WAITING 인 것만. 2건이 아니면 누가 먼저 가져간 것
    updated = QueueEntry.objects.filter(entry_id__in=wanted, status=QueueEntry.WAITING).update(
        status=QueueEntry.MATCHED,
        session_id=session.session_id,
        matched_at=now,
    )
    if updated != 2:
        logger.info("create_session conflict: conditional update touched %d entries", updated)
        raise errors.ConflictError()

    notify_queue_changed(VENTER, LISTENER)

    logger.info(
        "session created %s (venter=%s listener=%s channel=%s)",
        session.session_id,
        session.venter_id,
        session.listener_id,
        session.channel_id,
    )
    return session


def end_session(session_id, duration_seconds, end_reason: str = VentSession.MANUAL_ENDED) -> bool:
    """
    세션 종료. 이미 ENDED 거나 없는 세션이면 아무것도 안 함 (False).

    1) ACTIVE -> ENDED 조건부 update (이게 단일 진실)
    2) 그 다음 MATCHED 로 남은 queue entry 정리 (best-effort)
       정리 실패해도 1) 은 롤백하지 않음
    """
    if end_reason not in (VentSession.MANUAL_ENDED, VentSession.AUTO_ENDED):
        raise errors.ValidationError(f"unknown end reason: {end_reason}")

    duration = max(0, int(duration_seconds or 0))

    with transaction.atomic():
        updated = VentSession.objects.filter(session_id=session_id, status=VentSession.ACTIVE).update(
            status=VentSession.ENDED,
            ended_at=timezone.now(),
            duration_seconds=duration,
            end_reason=end_reason,
        )

    if not updated:
        logger.info("end_session no-op (session=%s already ended or missing)", session_id)
        return False

    logger.info("session ended %s (%s, %ss)", session_id, end_reason, duration)
    _cleanup_matched_entries(session_id)
    return True


def _cleanup_matched_entries(session_id) -> None:
    try:
        session = VentSession.objects.filter(session_id=session_id).first()
        if session is None:
            return
        entry_ids = [
            e for e in (session.venter_queue_entry_id, session.listener_queue_entry_id) if e
        ]
        deleted, _ = QueueEntry.objects.filter(
            entry_id__in=entry_ids,
            status=QueueEntry.MATCHED,
            session_id=session.session_id,
        ).delete()
        if deleted:
            logger.info("removed %d matched queue entries of session %s", deleted, session_id)
    except DatabaseError:
        logger.warning("queue cleanup after end_session failed (session=%s)", session_id, exc_info=True)


def get_session(session_id):
    return VentSession.objects.filter(session_id=session_id).first()
