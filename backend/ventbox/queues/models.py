# ventbox/queues/models.py
import uuid

from django.db import models
from django.utils import timezone

from ventbox.queues.roles import ROLE_CHOICES


class QueueEntry(models.Model):
    # WAITING -> MATCHED -> (삭제). 역방향 없음
    WAITING = "WAITING"
    MATCHED = "MATCHED"
    STATUS_CHOICES = (
        (WAITING, "WAITING"),
        (MATCHED, "MATCHED"),
    )

    entry_id = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)

    participant_id = models.CharField(max_length=64, db_index=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=WAITING)

    # venter 만 채움
    vent_message = models.TextField(null=True, blank=True)
    plan = models.CharField(max_length=50, null=True, blank=True)

    # 매칭 시 세션 id 도장
    session_id = models.UUIDField(null=True, blank=True, db_index=True)

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    matched_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["role", "status", "created_at"], name="queue_role_status_created"),
        ]

    def __str__(self):
        return f"{self.entry_id} {self.role} {self.status}"

    @property
    def is_waiting(self) -> bool:
        return self.status == self.WAITING
