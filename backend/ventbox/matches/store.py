# ventbox/matches/store.py
import logging

from channels.db import database_sync_to_async
from django.db import DatabaseError

from ventbox.common import errors
from ventbox.matches import services
from ventbox.queues import admission, listener

logger = logging.getLogger(__name__)


def _store_call(fn):
    """sync ORM 함수를 async 로. DB 에러는 StoreError 로 바꿔서 올림."""
    wrapped = database_sync_to_async(fn)

    async def call(*args, **kwargs):
        try:
            return await wrapped(*args, **kwargs)
        except DatabaseError as exc:
            logger.error("store call %s failed", fn.__name__, exc_info=True)
            raise errors.StoreError(str(exc)) from exc

    call.__name__ = fn.__name__
    return call


_enqueue = _store_call(admission.enqueue)
_dequeue = _store_call(admission.dequeue)
_clear_participant = _store_call(admission.clear_participant)
_own_matched_session_id = _store_call(admission.own_matched_session_id)
_create_session = _store_call(services.create_session)
_end_session = _store_call(services.end_session)
_get_session = _store_call(services.get_session)


class MatchingStore:
    """
    매칭 상태 머신이 보는 queue/session store.
    클라이언트 하나당 하나. 상태 없음 (모든 상태는 DB 에).
    """

    async def enqueue(self, participant_id, role):
        return await _enqueue(participant_id, role)

    async def dequeue(self, entry_id):
        # dequeue 자체가 raise 안 함
        await _dequeue(entry_id)

    async def clear_participant(self, participant_id):
        return await _clear_participant(participant_id)

    async def subscribe(self, role_kind, *, exclude_participant=None):
        return await listener.subscribe(role_kind, exclude_participant=exclude_participant)

    async def create_session(self, **kwargs):
        return await _create_session(**kwargs)

    async def end_session(self, session_id, duration_seconds, end_reason):
        return await _end_session(session_id, duration_seconds, end_reason)

    async def matched_session_for(self, entry_id):
        """내 entry 가 이미 상대 쪽에서 매칭됐으면 그 세션, 아니면 None."""
        session_id = await _own_matched_session_id(entry_id)
        if session_id is None:
            return None
        return await _get_session(session_id)
