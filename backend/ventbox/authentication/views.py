# ventbox/authentication/views.py
from rest_framework.views import APIView

from ventbox.common.responses import ok

from .services import sign_in_anonymous


class AnonymousSignInView(APIView):
    authentication_classes = []
    permission_classes = []

    def post(self, request):
        device_id = request.data.get("deviceId") or request.data.get("device_id")

        # ValidationError 는 custom_exception_handler 가 400 으로
        participant, token, created = sign_in_anonymous(device_id)

        return ok(
            {
                "participantId": str(participant.participant_id),
                "accessToken": token,
                "tokenType": "Bearer",
                "isNew": created,
            }
        )
