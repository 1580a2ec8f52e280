# ventbox/queues/roles.py
"""
참가자 역할.

Role = Venter(vent_message, plan) | Listener

문자열 비교 대신 타입으로 분기한다. 새 역할이 생기면 아래 함수들의
마지막 `raise TypeError` 에 걸리므로 빠뜨린 분기가 바로 드러난다.
"""
from dataclasses import dataclass
from typing import Optional, Union

from ventbox.common import errors

VENTER = "venter"
LISTENER = "listener"

ROLE_CHOICES = (
    (VENTER, "venter"),
    (LISTENER, "listener"),
)

VENT_MESSAGE_MIN = 10
VENT_MESSAGE_MAX = 500


@dataclass(frozen=True)
class Venter:
    vent_message: str
    plan: str

    kind = VENTER


@dataclass(frozen=True)
class Listener:
    kind = LISTENER


Role = Union[Venter, Listener]


def role_kind(role: Role) -> str:
    if isinstance(role, Venter):
        return VENTER
    if isinstance(role, Listener):
        return LISTENER
    raise TypeError(f"unknown role: {role!r}")


def opposite_kind(role: Role) -> str:
    if isinstance(role, Venter):
        return LISTENER
    if isinstance(role, Listener):
        return VENTER
    raise TypeError(f"unknown role: {role!r}")


def validate_role(role: Role) -> Role:
    """
    Venter 는 vent_message(공백 제거 후 10~500자)와 plan 이 필수.
    정규화된(trim) 새 Role 을 돌려준다.
    """
    if isinstance(role, Listener):
        return role

    if isinstance(role, Venter):
        message = (role.vent_message or "").strip()
        if not message:
            raise errors.ValidationError("Please write something before submitting")
        if len(message) < VENT_MESSAGE_MIN:
            raise errors.ValidationError(f"Please write at least {VENT_MESSAGE_MIN} characters")
        if len(message) > VENT_MESSAGE_MAX:
            raise errors.ValidationError(f"Vent text must be at most {VENT_MESSAGE_MAX} characters")

        plan = (role.plan or "").strip()
        if not plan:
            raise errors.ValidationError("Venter must select a plan")
        return Venter(vent_message=message, plan=plan)

    raise TypeError(f"unknown role: {role!r}")


def role_from_payload(kind: str, vent_message: Optional[str] = None, plan: Optional[str] = None) -> Role:
    """ws/http 로 들어온 {"role": "venter", "ventMessage": ..., "plan": ...} 를 Role 로."""
    kind = (kind or "").strip().lower()
    if kind == VENTER:
        return Venter(vent_message=vent_message or "", plan=plan or "")
    if kind == LISTENER:
        return Listener()
    raise errors.ValidationError(f"role must be '{VENTER}' or '{LISTENER}'")
