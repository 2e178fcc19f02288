"""Keep the controller loop alive.

The controller's run() only returns on cancellation. Any other exit is a
crash, and the loop is restarted after an exponential delay. A run that
stayed up for `stable_after` seconds clears the crash history, so a
controller that fails once a day is never given up on.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)


def restart_delay(crashes: int, base: float, cap: float) -> float:
    """Delay before restart number `crashes` (1-based)."""
    return min(base * (2 ** (crashes - 1)), cap)


async def supervised_task(
    run: Callable[[], Coroutine[Any, Any, None]],
    name: str,
    max_restarts: int = 10,
    base_backoff: float = 5.0,
    max_backoff: float = 300.0,
    stable_after: float = 600.0,
) -> bool:
    """Run `run()` until cancelled, restarting it after crashes.

    Returns False once `max_restarts` consecutive crashes have happened,
    True if the coroutine returned on its own. Cancellation propagates.
    """
    loop = asyncio.get_running_loop()
    crashes = 0
    while True:
        started = loop.time()
        try:
            logger.info(f"Starting {name}")
            await run()
        except asyncio.CancelledError:
            logger.info(f"{name} cancelled (clean shutdown)")
            raise
        except Exception as e:
            if loop.time() - started >= stable_after:
                crashes = 0
            crashes += 1
            logger.error(f"{name} crashed ({crashes}/{max_restarts}): {e}", exc_info=True)
        else:
            logger.warning(f"{name} returned without being cancelled, not restarting")
            return True

        if crashes >= max_restarts:
            logger.critical(f"{name} crashed {crashes} times in a row, giving up")
            return False
        delay = restart_delay(crashes, base_backoff, max_backoff)
        logger.info(f"Restarting {name} in {delay:.0f}s")
        await asyncio.sleep(delay)
