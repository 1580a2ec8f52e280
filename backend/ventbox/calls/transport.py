# ventbox/calls/transport.py
"""
Voice transport 경계.

코어는 채널 id 문자열만 넘기고 transport 내부는 모른다.
실제 구현은 settings.VOICE_TRANSPORT_CLASS (dotted path) 로 주입.
"""
import inspect
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

import requests
from asgiref.sync import sync_to_async
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from ventbox.common import errors
from ventbox.common.shared import SharedResource

logger = logging.getLogger(__name__)

TOKEN_EXPIRE_SECONDS = 3600


@dataclass
class JoinResult:
    joined: bool
    remote_participants: List[str] = field(default_factory=list)
    error: Optional[str] = None
    connection_state: str = "disconnected"


class VoiceTransport(Protocol):
    async def join_channel(self, channel_id: str, *, token: Optional[str], uid: str) -> JoinResult:
        ...

    async def leave_channel(self) -> None:
        ...


class VoiceTokenClient:
    """
    채널 토큰 발급 백엔드 호출.
    POST {channelName, uid, role, expireTime} -> {"token": "..."}
    """

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url if url is not None else getattr(settings, "VOICE_TOKEN_URL", "")
        self.timeout = timeout or float(getattr(settings, "VOICE_TOKEN_TIMEOUT_SECONDS", 10))

    def fetch_token_sync(self, channel_id: str, uid: str) -> Optional[str]:
        if not self.url:
            # 토큰 없이 app id 인증으로 들어가는 개발 환경
            logger.warning("VOICE_TOKEN_URL not set, joining %s without token", channel_id)
            return None

        try:
            resp = requests.post(
                self.url,
                json={
                    "channelName": channel_id,
                    "uid": uid,
                    "role": "publisher",
                    "expireTime": TOKEN_EXPIRE_SECONDS,
                },
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise errors.TransportError("Voice token request timed out") from exc
        except requests.RequestException as exc:
            raise errors.TransportError(f"Voice token request failed: {exc}") from exc

        if resp.status_code != 200:
            raise errors.TransportError(f"Token generation failed: {resp.status_code} - {resp.text[:200]}")

        try:
            token = (resp.json() or {}).get("token")
        except ValueError as exc:
            raise errors.TransportError("Token backend returned invalid JSON") from exc
        if not token:
            raise errors.TransportError("Token backend did not return a token")
        return token

    async def fetch_token(self, channel_id: str, uid: str) -> Optional[str]:
        return await sync_to_async(self.fetch_token_sync, thread_sensitive=False)(channel_id, uid)


def _build_engine():
    path = getattr(settings, "VOICE_TRANSPORT_CLASS", None)
    if not path:
        raise ImproperlyConfigured("VOICE_TRANSPORT_CLASS is not set")
    return import_string(path)()


async def _close_engine(engine) -> None:
    close = getattr(engine, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


# 프로세스당 엔진 하나. 통화(VoiceCall)마다 acquire/release
voice_engines = SharedResource("voice-engine", _build_engine, _close_engine)
