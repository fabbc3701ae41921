from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from typing import TypeVar

from ..errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

INITIAL_DELAY_MS = 200
MAX_DELAY_MS = 5000


def backoff_delays(attempts: int) -> Iterator[int]:
    """两次尝试之间的等待时间（毫秒），共 attempts - 1 个"""
    delay = INITIAL_DELAY_MS
    for _ in range(max(0, int(attempts) - 1)):
        yield delay
        delay = min(delay * 2, MAX_DELAY_MS)


async def retry_async(
    attempts: int,
    operation: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[BaseException], ...] = (TransportError,),
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> T:
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delays = backoff_delays(attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            delay_ms = next(delays, None)
            if delay_ms is None:
                logger.warning("重试次数已用尽 attempts=%s error=%s", attempt, e)
                raise
            logger.info("请求失败，%sms 后重试 attempt=%s error=%s", delay_ms, attempt, e)
            _ = await sleep(delay_ms / 1000.0)
