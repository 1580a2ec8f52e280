# ventbox/common/backoff.py
from dataclasses import dataclass

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential


@dataclass(frozen=True)
class BackoffPolicy:
    """
    재시도 규칙 한 곳에 모음.

    - max_attempts: 최초 시도 포함 총 시도 횟수
    - base_delay:   첫 재시도 전 대기(초)
    - multiplier:   재시도마다 곱해지는 배수
    - max_delay:    대기 상한(초)

    stats 집계기, 매칭 retry, voice join 이 모두 이 객체 하나로 동작한다.
    """

    max_attempts: int
    base_delay: float
    multiplier: float = 2.0
    max_delay: float = 10.0

    def delay_for(self, retry_index: int) -> float:
        """retry_index 번째 재시도(0부터) 전에 기다릴 시간."""
        retry_index = max(0, int(retry_index))
        return min(self.base_delay * (self.multiplier ** retry_index), self.max_delay)

    def retrying(self, *, retry_on=(Exception,)) -> AsyncRetrying:
        # tenacity: wait = multiplier * exp_base ** (attempt_number - 1)
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(retry_on),
            reraise=True,
        )


# stats: 3회, 1s -> 2s -> ... 10s 상한
STATS_BACKOFF = BackoffPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=10.0)

# voice channel join: 2회
VOICE_JOIN_BACKOFF = BackoffPolicy(max_attempts=2, base_delay=1.0, multiplier=2.0, max_delay=10.0)


def match_retry_policy(base_delay: float = 2.0) -> BackoffPolicy:
    return BackoffPolicy(max_attempts=3, base_delay=base_delay, multiplier=2.0, max_delay=10.0)
