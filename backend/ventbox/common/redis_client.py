# ventbox/common/redis_client.py
import redis
from django.conf import settings


_redis = None


def get_redis():
    """
    stats 캐시 문서(stats:queue)용 공용 클라이언트.
    프로세스당 하나, 첫 호출 때 연결.
    """
    global _redis
    if _redis is None:
        _redis = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,  # bytes 말고 str로 받게
            socket_timeout=getattr(settings, "REDIS_SOCKET_TIMEOUT", 2),
            socket_connect_timeout=getattr(settings, "REDIS_SOCKET_TIMEOUT", 2),
        )
    return _redis
