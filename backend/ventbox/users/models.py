# ventbox/users/models.py
import uuid

from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models


class ParticipantManager(BaseUserManager):
    use_in_migrations = True

    def create_user(self, device_id, password=None, **extra_fields):
        if not device_id:
            raise ValueError("device_id must be set")

        device_id = str(device_id).strip()
        user = self.model(device_id=device_id, **extra_fields)

        if password:
            user.set_password(password)
        else:
            # 익명 로그인: 비밀번호 없음
            user.set_unusable_password()

        user.save(using=self._db)
        return user

    def create_superuser(self, device_id, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)
        extra_fields.setdefault("is_active", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        return self.create_user(device_id, password=password, **extra_fields)


class Participant(AbstractUser):
    # username 기반 로그인 제거 (기기 단위 익명 계정)
    username = None

    device_id = models.CharField(max_length=128, unique=True)

    # queue/session 에 들어가는 불투명 식별자. 기기 id 는 밖으로 안 나간다.
    participant_id = models.UUIDField(default=uuid.uuid4, unique=True, db_index=True)

    USERNAME_FIELD = "device_id"
    REQUIRED_FIELDS = []

    objects = ParticipantManager()

    def __str__(self):
        return f"{self.id} {self.participant_id}"
