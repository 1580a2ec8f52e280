# ventbox/matches/views.py
import uuid

from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from ventbox.common.responses import fail, ok

from . import services
from .models import VentSession


def _parse_session_id(raw):
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        return None


def _load_own_session(request, raw_session_id):
    """(session, error_response)"""
    if not raw_session_id:
        return None, fail("VALIDATION_ERROR", "sessionId is required")

    session_id = _parse_session_id(raw_session_id)
    if session_id is None:
        return None, fail("VALIDATION_ERROR", "sessionId must be a UUID")

    session = services.get_session(session_id)
    if not session:
        return None, fail("SESSION_NOT_FOUND", "session not found", 404)

    if not session.is_participant(request.user.participant_id):
        return None, fail("FORBIDDEN", "not your session", 403)

    return session, None


class MatchEndView(APIView):
    """
    POST /api/match/end
    body: { "sessionId": "uuid", "durationSeconds": 312, "endReason": "manual-ended" }
    이미 끝난 세션이면 ended=false (에러 아님)
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        session, error = _load_own_session(
            request, request.data.get("sessionId") or request.data.get("session_id")
        )
        if error is not None:
            return error

        try:
            duration = int(request.data.get("durationSeconds") or 0)
        except (TypeError, ValueError):
            return fail("VALIDATION_ERROR", "durationSeconds must be a number")

        reason = request.data.get("endReason") or VentSession.MANUAL_ENDED
        ended = services.end_session(session.session_id, duration, reason)

        return ok({"sessionId": str(session.session_id), "ended": ended})


class SessionDetailView(APIView):
    """GET /api/match/sessions/<sessionId>"""

    permission_classes = [IsAuthenticated]

    def get(self, request, session_id):
        session, error = _load_own_session(request, session_id)
        if error is not None:
            return error
        return ok(session.as_payload())
