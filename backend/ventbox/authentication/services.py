# ventbox/authentication/services.py
import logging

from django.db import IntegrityError, transaction
from rest_framework_simplejwt.tokens import AccessToken

from ventbox.common import errors
from ventbox.users.models import Participant

logger = logging.getLogger(__name__)

DEVICE_ID_MAX = 128


def normalize_device_id(device_id) -> str:
    device_id = str(device_id or "").strip()
    if not device_id:
        raise errors.ValidationError("deviceId is required")
    if len(device_id) > DEVICE_ID_MAX:
        raise errors.ValidationError(f"deviceId must be at most {DEVICE_ID_MAX} characters")
    return device_id


def get_or_create_participant(device_id: str):
    """기기 id 하나에 익명 참가자 하나. (participant, created)"""
    device_id = normalize_device_id(device_id)

    participant = Participant.objects.filter(device_id=device_id).first()
    if participant is not None:
        return participant, False

    try:
        with transaction.atomic():
            participant = Participant.objects.create_user(device_id)
    except IntegrityError:
        # 같은 기기에서 동시에 두 번 들어옴
        return Participant.objects.get(device_id=device_id), False

    logger.info("anonymous participant created %s", participant.participant_id)
    return participant, True


def issue_jwt_for_user(user) -> str:
    token = AccessToken.for_user(user)
    return str(token)


def sign_in_anonymous(device_id):
    participant, created = get_or_create_participant(device_id)
    if not participant.is_active:
        raise errors.AuthenticationRequired("This device has been deactivated.")
    return participant, issue_jwt_for_user(participant), created
