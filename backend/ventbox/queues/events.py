# ventbox/queues/events.py
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

logger = logging.getLogger(__name__)

QUEUE_CHANGED = "queue.changed"


def queue_group(role_kind: str) -> str:
    # channels group 이름: 영숫자/하이픈/언더스코어/마침표만
    return f"queue.{role_kind}"


def notify_queue_changed(*role_kinds: str) -> None:
    """
    queue 변경(등록/삭제/매칭)을 해당 역할을 구독 중인 클라이언트들에게 알림.
    커밋된 뒤에만 보낸다. 롤백된 변경은 알리지 않음.

    알림 내용은 "바뀌었다" 뿐이고, 받는 쪽이 후보 목록을 다시 조회한다.
    """
    kinds = tuple(dict.fromkeys(k for k in role_kinds if k))
    if not kinds:
        return

    def _send():
        layer = get_channel_layer()
        if layer is None:
            return
        for kind in kinds:
            try:
                async_to_sync(layer.group_send)(
                    queue_group(kind), {"type": QUEUE_CHANGED, "role": kind}
                )
            except Exception:
                # 알림 실패는 매칭 정합성과 무관 (다음 변경 때 다시 조회됨)
                logger.warning("queue change notify failed: %s", kind, exc_info=True)

    transaction.on_commit(_send)
