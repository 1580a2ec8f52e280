# ventbox/queues/views.py
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from ventbox.common.responses import fail, ok

from .roles import LISTENER, VENTER
from .stats import estimate_wait, get_queue_stats


class QueueStatsView(APIView):
    """
    GET /api/queue/stats?role=listener
    통계는 실패해도 200 + 0 값 + error
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        role = request.query_params.get("role")
        if role and role not in (VENTER, LISTENER):
            return fail("VALIDATION_ERROR", f"role must be '{VENTER}' or '{LISTENER}'")

        stats = get_queue_stats()
        data = stats.as_payload()
        if role:
            data["estimatedWait"] = estimate_wait(stats, role)
        return ok(data)
