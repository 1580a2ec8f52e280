from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from ventbox.common.responses import ok

from .serializers import ParticipantMeSerializer


class MeView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        serializer = ParticipantMeSerializer(request.user)
        return ok(serializer.data)
