# ventbox/queues/admission.py
"""
Queue 입장 관리: 참가자 한 명의 queue 존재를 책임진다.

- enqueue:            WAITING entry 1건 insert (기존 entry 를 대신 지워주지 않음)
- dequeue:            삭제. 없으면 성공 취급, 절대 raise 안 함
- clear_participant:  그 참가자의 WAITING entry 전부 삭제 (enqueue 전에 호출)
- reclaim_stale:      TTL 넘긴 WAITING entry 청소 (주기적 sweep)
"""
import logging
from datetime import timedelta

from django.db import DatabaseError, transaction
from django.utils import timezone

from ventbox.queues.events import notify_queue_changed
from ventbox.queues.models import QueueEntry
from ventbox.queues.roles import Listener, Role, Venter, role_kind, validate_role

logger = logging.getLogger(__name__)


def enqueue(participant_id: str, role: Role) -> QueueEntry:
    # 검증은 store 호출 전에 (ValidationError)
    role = validate_role(role)

    fields = {
        "participant_id": str(participant_id),
        "role": role_kind(role),
        "status": QueueEntry.WAITING,
    }
    if isinstance(role, Venter):
        fields["vent_message"] = role.vent_message
        fields["plan"] = role.plan
    elif not isinstance(role, Listener):
        raise TypeError(f"unknown role: {role!r}")

    with transaction.atomic():
        entry = QueueEntry.objects.create(**fields)
        notify_queue_changed(entry.role)

    logger.info("enqueued %s as %s (entry=%s)", participant_id, entry.role, entry.entry_id)
    return entry


def dequeue(entry_id) -> None:
    try:
        with transaction.atomic():
            entry = QueueEntry.objects.filter(entry_id=entry_id).first()
            if entry is None:
                # 이미 매칭/정리로 사라짐
                return
            entry.delete()
            notify_queue_changed(entry.role)
    except DatabaseError:
        # 정리 경로라 올리지 않음. 남은 건 reclaim_stale 이 치운다
        logger.warning("dequeue failed (entry=%s)", entry_id, exc_info=True)
        return

    logger.info("dequeued entry=%s", entry_id)


def clear_participant(participant_id: str) -> int:
    with transaction.atomic():
        qs = QueueEntry.objects.filter(participant_id=str(participant_id), status=QueueEntry.WAITING)
        kinds = set(qs.values_list("role", flat=True))
        deleted, _ = qs.delete()
        if deleted:
            notify_queue_changed(*kinds)

    if deleted:
        logger.info("cleared %d waiting entries of %s", deleted, participant_id)
    return deleted


def reclaim_stale(ttl_seconds: int) -> int:
    """
    created_at 이 ttl 보다 오래된 WAITING entry 삭제. 삭제 건수 반환.

    매칭과 동시에 돌아도 됨: 매칭 직전에 지워진 entry 는 세션 생성
    트랜잭션에서 ConflictError 로 떨어지고, 진 쪽은 계속 대기한다.
    """
    cutoff = timezone.now() - timedelta(seconds=ttl_seconds)

    with transaction.atomic():
        qs = QueueEntry.objects.filter(status=QueueEntry.WAITING, created_at__lt=cutoff)
        kinds = set(qs.values_list("role", flat=True))
        deleted, _ = qs.delete()
        if deleted:
            notify_queue_changed(*kinds)

    logger.info("reclaimed %d stale queue entries (ttl=%ss)", deleted, ttl_seconds)
    return deleted


def fetch_candidates(role: str, *, window: int = 10, exclude_participant: str = None):
    """role 의 WAITING entry 를 오래된 순으로 window 개."""
    qs = QueueEntry.objects.filter(role=role, status=QueueEntry.WAITING)
    if exclude_participant:
        qs = qs.exclude(participant_id=str(exclude_participant))
    return list(qs.order_by("created_at", "id")[:window])


def own_matched_session_id(entry_id):
    """내 entry 가 상대 쪽 세션 생성으로 MATCHED 됐으면 그 세션 id."""
    return (
        QueueEntry.objects.filter(entry_id=entry_id, status=QueueEntry.MATCHED)
        .values_list("session_id", flat=True)
        .first()
    )
