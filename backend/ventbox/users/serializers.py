# ventbox/users/serializers.py
from django.db.models import Q
from rest_framework import serializers

from .models import Participant


class ParticipantMeSerializer(serializers.ModelSerializer):
    participantId = serializers.CharField(source="participant_id", read_only=True)
    joinedAt = serializers.DateTimeField(source="date_joined", read_only=True)
    activeSessionId = serializers.SerializerMethodField()

    class Meta:
        model = Participant
        fields = ["participantId", "joinedAt", "activeSessionId"]

    def get_activeSessionId(self, obj: Participant):
        from ventbox.matches.models import VentSession

        pid = str(obj.participant_id)
        session = (
            VentSession.objects.filter(status=VentSession.ACTIVE)
            .filter(Q(venter_id=pid) | Q(listener_id=pid))
            .order_by("-started_at")
            .first()
        )
        return str(session.session_id) if session else None
