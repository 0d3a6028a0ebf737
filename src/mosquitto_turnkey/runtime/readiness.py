from __future__ import annotations

import asyncio
import logging
import re
from typing import Callable

from mosquitto_turnkey.utils.diagnostics import MosquittoTimeoutError

LOGGER = logging.getLogger(__name__)

BANNER_PATTERN = re.compile(r"mosquitto version [0-9.]+ running", re.DOTALL)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_INTERVAL_SECONDS = 0.05


def banner_seen(output: str) -> bool:
    """Return True when the accumulated output contains the startup banner."""
    return BANNER_PATTERN.search(output) is not None


async def _poll_for_banner(read_output: Callable[[], str], interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        if banner_seen(read_output()):
            return


async def wait_for_banner(
    read_output: Callable[[], str],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    interval: float = DEFAULT_INTERVAL_SECONDS,
) -> None:
    """
    Race a banner poll against a hard timeout.

    Every ``interval`` seconds the full output accumulated so far is scanned,
    so a banner split across chunks is still found. Whichever of the poll and
    the timeout finishes first decides the outcome; the other one is
    cancelled and awaited before this coroutine returns, so nothing fires
    after resolution.
    """
    poll_task = asyncio.ensure_future(_poll_for_banner(read_output, interval))
    timeout_task = asyncio.ensure_future(asyncio.sleep(timeout))

    try:
        done, _ = await asyncio.wait({poll_task, timeout_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (poll_task, timeout_task):
            task.cancel()
        await asyncio.gather(poll_task, timeout_task, return_exceptions=True)

    if poll_task in done:
        poll_task.result()
        LOGGER.debug("startup banner detected")
        return

    raise MosquittoTimeoutError(timeout)
