"""Bounded waits shared by the approval gate and the rollout poller."""

import asyncio
from typing import Optional


async def wait_for_any(*events: Optional[asyncio.Event], timeout: float) -> bool:
    """Waits until one of `events` is set or `timeout` seconds pass.

    Returns True if an event fired, False on timeout. None entries are ignored.
    """
    active = [e for e in events if e is not None]
    if any(e.is_set() for e in active):
        return True
    if not active:
        await asyncio.sleep(max(timeout, 0))
        return False

    waiters = [asyncio.ensure_future(e.wait()) for e in active]
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=max(timeout, 0), return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for waiter in waiters:
            waiter.cancel()
    return bool(done)
