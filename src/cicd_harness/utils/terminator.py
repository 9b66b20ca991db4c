"""
Server process terminator.

SIGTERM the whole process tree, wait for the grace period, then SIGKILL the
tree and wait for the exit until the overall stop deadline. A process that
exits on its own counts the same as one we killed. Concurrent calls on the
same handle share one in-flight stop.
"""
import asyncio
import time
from typing import Optional

from ..models.outcomes import StopOutcome, StopStatus
from .logging import get_logger
from .process_utils import (
    ChildProcessHandle,
    list_process_tree,
    reap_descendants,
    signal_process_tree,
)

logger = get_logger(__name__)


async def terminate(
    handle: Optional[ChildProcessHandle],
    grace_period: float = 2.0,
    stop_timeout: float = 5.0
) -> StopOutcome:
    """
    Stop the server process and its descendants.

    Calling it without a handle, for a process that already exited, or
    twice for the same handle never raises.

    Args:
        handle: Handle of the process to stop (None is a no-op)
        grace_period: Seconds to wait after SIGTERM before escalating
        stop_timeout: Overall deadline in seconds, including the grace period

    Returns:
        StopOutcome with status stopped or failed-to-stop
    """
    if handle is None:
        return StopOutcome(status=StopStatus.STOPPED)

    if handle.stop_task is None:
        handle.stop_task = asyncio.create_task(_stop(handle, grace_period, stop_timeout))

    # Shielded so a cancelled caller does not abort a stop another caller awaits
    return await asyncio.shield(handle.stop_task)


async def _stop(handle: ChildProcessHandle, grace_period: float, stop_timeout: float) -> StopOutcome:
    start_time = time.monotonic()
    deadline = start_time + stop_timeout
    tree = [] if handle.exited else list_process_tree(handle.pid)
    descendants = tree[:-1]

    if handle.exited:
        logger.debug("terminate_already_exited", pid=handle.pid, exit_code=handle.returncode)
        await handle.close_readers()
        return StopOutcome(status=StopStatus.STOPPED, exit_code=handle.returncode)

    logger.info("terminate_started", pid=handle.pid, tree_size=len(tree), grace_period=grace_period)
    signal_process_tree(tree, kill=False)

    forced = False
    try:
        await asyncio.wait_for(handle.wait(), timeout=min(grace_period, stop_timeout))
    except asyncio.TimeoutError:
        forced = True
        logger.warning("terminate_escalating", pid=handle.pid, grace_period=grace_period)
        # Re-read the tree: workers may have been spawned after the first scan
        current = list_process_tree(handle.pid) or tree
        signal_process_tree(current, kill=True)
        descendants = list({proc.pid: proc for proc in descendants + current[:-1]}.values())

        try:
            await asyncio.wait_for(handle.wait(), timeout=max(0.0, deadline - time.monotonic()))
        except asyncio.TimeoutError:
            elapsed = round(time.monotonic() - start_time, 3)
            logger.error("terminate_timeout", pid=handle.pid, elapsed=elapsed)
            return StopOutcome(
                status=StopStatus.FAILED_TO_STOP,
                elapsed_seconds=elapsed,
                forced=True
            )

    await reap_descendants(descendants, timeout=max(0.1, min(1.0, deadline - time.monotonic())))
    await handle.close_readers()

    elapsed = round(time.monotonic() - start_time, 3)
    logger.info(
        "terminate_completed",
        pid=handle.pid,
        exit_code=handle.returncode,
        forced=forced,
        elapsed=elapsed
    )
    return StopOutcome(
        status=StopStatus.STOPPED,
        elapsed_seconds=elapsed,
        forced=forced,
        exit_code=handle.returncode
    )
