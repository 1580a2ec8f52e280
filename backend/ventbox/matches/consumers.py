import logging

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings

from ventbox.calls.voice_call import VoiceCall
from ventbox.common import errors
from ventbox.matches.models import VentSession
from ventbox.matches.state_machine import (
    MatchHandoff,
    MatchingAlert,
    MatchingStateMachine,
    MatchingStatus,
    ParticipantIdentity,
)
from ventbox.matches.store import MatchingStore
from ventbox.queues.roles import role_from_payload, role_kind
from ventbox.queues.stats import estimate_wait, stats_aggregators

logger = logging.getLogger(__name__)


class MatchingConsumer(AsyncJsonWebsocketConsumer):
    """
    WS Matching Protocol
      - URL: ws://<host>/ws/matching/?token=<jwt>
      - client -> server
          {"type": "start", "role": "venter", "ventMessage": "...", "plan": "20-Min Vent"}
          {"type": "start", "role": "listener"}
          {"type": "stop"}
          {"type": "retry"}
          {"type": "stats", "role": "listener"}
          {"type": "call.join"}
          {"type": "end", "durationSeconds": 312}
      - server -> client
          {"type": "status", "status": "searching"}
          {"type": "matched", "data": {channelId, sessionId, plan, ventMessage, isInitiatingParticipant}}
          {"type": "alert", "error": {code, title, message, retryable}}
          {"type": "stats", "data": {...}, "estimatedWait": {...}}
          {"type": "call.joined", "data": {...}}
          {"type": "ended", "data": {"sessionId": ..., "ended": true}}
    """

    async def connect(self):
        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            # 4401 Unauthorized (앱에서 처리하기 쉬움)
            await self.close(code=4401)
            return

        self.participant_id = str(user.participant_id)
        self.store = MatchingStore()
        self.machine = MatchingStateMachine(
            ParticipantIdentity(self.participant_id, True),
            store=self.store,
            on_match=self._send_matched,
            on_alert=self._send_alert,
            on_status=self._send_status,
        )
        self.call = None
        self.stats = None
        self.closed = False

        await self.accept()
        await self._send_status(self.machine.status)

    async def disconnect(self, close_code):
        # connect 실패한 케이스
        machine = getattr(self, "machine", None)
        if machine is None:
            return
        self.closed = True

        # 화면을 떠나면 대기열에서 빠진다
        await machine.stop()

        call, self.call = self.call, None
        handoff = machine.handoff
        try:
            if call is not None and not call.ended:
                await call.end(VentSession.MANUAL_ENDED)
            elif handoff is not None and (call is None or call.handoff.session_id != handoff.session_id):
                # 통화 연결 전에 나감. 세션을 ACTIVE 로 두지 않는다
                await self.store.end_session(handoff.session_id, 0, VentSession.MANUAL_ENDED)
        except errors.VentboxError:
            logger.warning("ending session on disconnect failed", exc_info=True)

        if self.stats is not None:
            self.stats = None
            await stats_aggregators.release()

    async def receive_json(self, content, **kwargs):
        action = content.get("type") if isinstance(content, dict) else None
        handler = {
            "start": self._start,
            "stop": self._stop,
            "retry": self._retry,
            "stats": self._stats,
            "call.join": self._join_call,
            "end": self._end,
        }.get(action)

        if handler is None:
            await self._send_alert(MatchingAlert("UNKNOWN_ACTION", "Error", f"unknown message type: {action}"))
            return

        try:
            await handler(content)
        except errors.VentboxError as exc:
            await self._send_alert(MatchingAlert.from_error(exc))

    # ---- actions ----

    async def _start(self, content):
        role = role_from_payload(content.get("role"), content.get("ventMessage"), content.get("plan"))
        await self.machine.start(role)

    async def _stop(self, content):
        await self.machine.stop()

    async def _retry(self, content):
        if not self.machine.retry():
            await self._send_alert(
                MatchingAlert("RETRY_UNAVAILABLE", "Error", "Nothing to retry right now.")
            )

    async def _stats(self, content):
        if self.stats is None:
            self.stats = await stats_aggregators.acquire()
        stats = await self.stats.get_stats()

        kind = content.get("role")
        if not kind and self.machine.role is not None:
            kind = role_kind(self.machine.role)

        message = {"type": "stats", "data": stats.as_payload()}
        if kind:
            try:
                message["estimatedWait"] = estimate_wait(stats, kind)
            except ValueError:
                raise errors.ValidationError(f"unknown role: {kind}")
        await self._send(message)

    async def _join_call(self, content):
        handoff = self.machine.handoff
        if handoff is None or self.machine.status is not MatchingStatus.FOUND:
            raise errors.ValidationError("No active match to join")
        if not getattr(settings, "VOICE_TRANSPORT_CLASS", None):
            raise errors.TransportError("Voice transport is not configured")

        if self.call is None or self.call.handoff.session_id != handoff.session_id:
            self.call = VoiceCall(handoff, self.participant_id, end_session=self.store.end_session)
        result = await self.call.connect()
        await self._send(
            {
                "type": "call.joined",
                "data": {
                    "channelId": handoff.channel_id,
                    "sessionId": handoff.session_id,
                    "remoteParticipants": result.remote_participants,
                    "connectionState": result.connection_state,
                },
            }
        )

    async def _end(self, content):
        handoff = self.machine.handoff
        if handoff is None:
            raise errors.ValidationError("No session to end")

        reason = content.get("endReason") or VentSession.MANUAL_ENDED
        if self.call is not None and self.call.handoff.session_id == handoff.session_id:
            ended = await self.call.end(reason)
        else:
            try:
                duration = max(0, int(content.get("durationSeconds") or 0))
            except (TypeError, ValueError):
                raise errors.ValidationError("durationSeconds must be a number")
            ended = await self.store.end_session(handoff.session_id, duration, reason)

        await self._send({"type": "ended", "data": {"sessionId": handoff.session_id, "ended": bool(ended)}})

    # ---- state machine callbacks ----

    async def _send_status(self, status: MatchingStatus):
        await self._send({"type": "status", "status": status.value})

    async def _send_matched(self, handoff: MatchHandoff):
        await self._send({"type": "matched", "data": handoff.as_payload()})

    async def _send_alert(self, alert: MatchingAlert):
        await self._send({"type": "alert", "error": alert.as_payload()})

    async def _send(self, message: dict):
        if getattr(self, "closed", False):
            return
        await self.send_json(message)
