"""
Fixed-interval polling primitive.

One loop for every screen or tool that waits on a server-side state
(payment screen, kitchen display, CLI watchers): fetch, check a terminal
condition, sleep, repeat until terminal, timeout or cancellation.

Usage:
    stop = asyncio.Event()
    result = await poll_until(
        fetch=lambda: client.payment_status(order_id),
        is_terminal=lambda r: r["status"] != "pending",
        interval=3.0,
        timeout=300.0,
        cancel_event=stop,
    )
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from shared.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class PollResult(Generic[T]):
    """Outcome of a polling run."""

    value: T | None
    attempts: int
    terminal: bool
    cancelled: bool = False
    timed_out: bool = False


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    interval: float,
    timeout: float | None = None,
    cancel_event: asyncio.Event | None = None,
    on_result: Callable[[T], None] | None = None,
    stop_on_error: bool = False,
) -> PollResult[T]:
    """
    Call `fetch` every `interval` seconds until `is_terminal(result)`.

    A fetch error is logged and the loop carries on, unless
    `stop_on_error` is set, in which case it propagates. Setting
    `cancel_event` stops the loop promptly, including mid-sleep.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    started = time.monotonic()
    attempts = 0
    last: T | None = None

    while True:
        if cancel_event is not None and cancel_event.is_set():
            return PollResult(value=last, attempts=attempts, terminal=False, cancelled=True)

        attempts += 1
        try:
            last = await fetch()
        except Exception as e:
            if stop_on_error:
                raise
            logger.warning("Poll fetch failed", attempt=attempts, error=str(e))
        else:
            if on_result is not None:
                on_result(last)
            if is_terminal(last):
                return PollResult(value=last, attempts=attempts, terminal=True)

        if timeout is not None and time.monotonic() - started + interval > timeout:
            return PollResult(value=last, attempts=attempts, terminal=False, timed_out=True)

        if cancel_event is None:
            await asyncio.sleep(interval)
            continue

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
