from __future__ import annotations

import asyncio

from hlsingest.core.logging import get_logger

logger = get_logger(component="subprocess")

KILL_GRACE_S = 5.0


async def reap(process: asyncio.subprocess.Process, *, context: str) -> None:
    """Kill ``process`` if it is still running and wait for it to exit.

    The process may exit between the ``returncode`` check and ``kill()``, so a
    missing process is not an error.
    """
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_S)
    except asyncio.TimeoutError:
        logger.warning("subprocess_not_reaped", context=context, pid=process.pid)


__all__ = ["reap"]
