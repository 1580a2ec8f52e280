# ventbox/common/shared.py
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Factory = Callable[[], Union[T, Awaitable[T]]]
Closer = Callable[[T], Union[None, Awaitable[None]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class SharedResource(Generic[T]):
    """
    프로세스 안에서 여러 소비자가 같이 쓰는 자원 (stats 집계기, voice engine 등).

    - 첫 acquire() 에서 lazy 생성
    - release() 로 마지막 소비자가 빠지면 close
    - 생성/해제는 asyncio.Lock 으로 직렬화 (동시에 두 번 만드는 일 없음)
    """

    def __init__(self, name: str, create: Factory, close: Optional[Closer] = None):
        self.name = name
        self._create = create
        self._close = close
        self._lock = asyncio.Lock()
        self._value: Optional[T] = None
        self._refs = 0

    @property
    def refs(self) -> int:
        return self._refs

    @property
    def value(self) -> Optional[T]:
        return self._value

    async def acquire(self) -> T:
        async with self._lock:
            if self._value is None:
                self._value = await _maybe_await(self._create())
                logger.info("shared resource created: %s", self.name)
            self._refs += 1
            return self._value

    async def release(self) -> None:
        async with self._lock:
            if self._refs == 0:
                return
            self._refs -= 1
            if self._refs > 0:
                return

            value, self._value = self._value, None
            if value is not None and self._close is not None:
                try:
                    await _maybe_await(self._close(value))
                except Exception:
                    logger.warning("shared resource close failed: %s", self.name, exc_info=True)
            logger.info("shared resource released: %s", self.name)
