# ventbox/matches/models.py
import uuid

from django.db import models
from django.utils import timezone


class VentSession(models.Model):
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"
    STATUS_CHOICES = (
        (ACTIVE, "ACTIVE"),
        (ENDED, "ENDED"),
    )

    MANUAL_ENDED = "manual-ended"
    AUTO_ENDED = "auto-ended"
    END_REASON_CHOICES = (
        (MANUAL_ENDED, "manual-ended"),
        (AUTO_ENDED, "auto-ended"),
    )

    session_id = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)

    venter_id = models.CharField(max_length=64, db_index=True)
    listener_id = models.CharField(max_length=64, db_index=True)

    # voice transport 채널 (ventbox_<ts>_<hex>)
    channel_id = models.CharField(max_length=64, unique=True)

    vent_message = models.TextField(blank=True, default="")
    plan = models.CharField(max_length=50)

    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=ACTIVE)
    started_at = models.DateTimeField(default=timezone.now)
    ended_at = models.DateTimeField(null=True, blank=True)
    duration_seconds = models.PositiveIntegerField(default=0)
    end_reason = models.CharField(max_length=20, choices=END_REASON_CHOICES, null=True, blank=True)

    # 정리용 역참조. live 상태 조회에는 쓰지 않음
    venter_queue_entry_id = models.UUIDField(null=True, blank=True)
    listener_queue_entry_id = models.UUIDField(null=True, blank=True)

    def __str__(self):
        return f"{self.session_id} {self.status}"

    def is_participant(self, participant_id) -> bool:
        return str(participant_id) in (self.venter_id, self.listener_id)

    def as_payload(self) -> dict:
        return {
            "sessionId": str(self.session_id),
            "channelId": self.channel_id,
            "venterId": self.venter_id,
            "listenerId": self.listener_id,
            "ventMessage": self.vent_message,
            "plan": self.plan,
            "status": self.status,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "durationSeconds": self.duration_seconds,
            "endReason": self.end_reason,
        }
