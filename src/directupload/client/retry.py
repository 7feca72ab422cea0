"""Retry for transfer requests, cut short by the abort signal."""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from directupload.client.errors import UploadAborted
from directupload.client.signal import AbortSignal

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    retry: int = 0,
    delay: float = 0.0,
    signal: Optional[AbortSignal] = None,
) -> T:
    """Call ``fn`` up to ``retry + 1`` times, waiting ``delay`` seconds in between.

    Abort always wins: an :class:`UploadAborted` raised by ``fn`` or by the
    wait between attempts is re-raised at once without using up the
    remaining attempts. Task cancellation (``asyncio.wait_for`` timeouts,
    ``task.cancel()``) propagates the same way.

    Raises:
        UploadAborted: If the signal fires
        Exception: Whatever the last attempt raised
    """
    signal = signal or AbortSignal()
    result = None
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retry + 1),
        wait=wait_fixed(delay),
        # CancelledError is a BaseException and must never be retried
        retry=retry_if_exception_type(Exception) & retry_if_not_exception_type(UploadAborted),
        sleep=signal.sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            signal.raise_if_aborted()
            result = await fn()
    return result
