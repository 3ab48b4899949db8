from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

logger = logging.getLogger("pkginstaller.progress")


async def _tick_forever(interval: float, callback: Callable[[], None]) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            callback()
        except Exception:  # noqa: BLE001
            # A failed progress sample must not abort the operation it observes
            logger.exception("Progress reporter tick failed")


@asynccontextmanager
async def periodic_task(interval: float, callback: Callable[[], None]) -> AsyncIterator[asyncio.Task]:
    """Run ``callback`` every ``interval`` seconds while the block executes.

    The reporter is cancelled and awaited when the block exits, whether the
    wrapped operation succeeded or raised, so it never outlives its stage.
    """

    task = asyncio.create_task(_tick_forever(interval, callback))
    try:
        yield task
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
