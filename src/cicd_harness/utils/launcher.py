# Este archivo lanza el servidor como proceso hijo y espera a que esté listo:
# primero el marcador en stdout y luego la sonda de salud.

"""
Server process launcher.

A launch attempt is ready only after the readiness marker appeared on stdout
AND the health probe returned True. It fails as soon as the process exits,
and with a timeout once the deadline passes. Every task created for the
attempt is cancelled when the attempt settles.
"""
import asyncio  # Subprocesos y tareas asíncronas
import os  # Entorno del proceso hijo
import time  # Medición de tiempo con reloj monotónico
from typing import Awaitable, Callable, Dict, Optional, Sequence, Tuple  # Type hints

from ..models.outcomes import ServerEndpoint, StartFailure, StartOutcome, StartStatus  # Modelos de resultado
from .health_utils import probe  # Sonda de salud
from .logging import get_logger  # Logger estructurado
from .process_utils import ChildProcessHandle  # Handle del proceso hijo

logger = get_logger(__name__)

Prober = Callable[[ServerEndpoint], Awaitable[bool]]


def build_child_env(overrides: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Inherit the current environment and apply overrides."""
    env = dict(os.environ)
    env.update(overrides or {})
    return env


async def launch(
    command: Sequence[str],
    endpoint: ServerEndpoint,
    readiness_marker: str = "Server running",
    timeout: float = 4.0,
    poll_interval: float = 0.3,
    probe_timeout: float = 1.0,
    expected_status: int = 200,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    on_spawn: Optional[Callable[[ChildProcessHandle], None]] = None,
    on_marker: Optional[Callable[[], None]] = None,
    prober: Optional[Prober] = None
) -> Tuple[StartOutcome, Optional[ChildProcessHandle]]:
    """
    Spawn the server and wait until it is ready.

    Args:
        command: Argv of the server process (no shell)
        endpoint: Endpoint whose health is probed after the marker
        readiness_marker: Literal text the server prints once bound
        timeout: Overall deadline for the attempt in seconds
        poll_interval: Delay between health probes after the marker
        probe_timeout: Timeout of a single health probe
        expected_status: Status code treated as healthy
        env: Environment overrides for the child
        cwd: Working directory for the child
        on_spawn: Called with the handle right after the spawn succeeded
        on_marker: Called once when the marker is first seen
        prober: Replacement for the HTTP health probe

    Returns:
        Tuple of (StartOutcome, handle). The handle is None only when the
        spawn itself failed; otherwise the caller owns it and must terminate it.
    """
    argv = list(command)
    check = prober or (lambda ep: probe(ep, timeout=probe_timeout, expected_status=expected_status))
    start_time = time.monotonic()

    logger.info("launch_started", command=argv, endpoint=endpoint.base_url, timeout=timeout)

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=build_child_env(env),
            cwd=cwd,
            start_new_session=os.name == "posix"
        )
    except OSError as e:
        elapsed = round(time.monotonic() - start_time, 3)
        logger.error("launch_spawn_failed", command=argv, error=str(e))
        return StartOutcome(
            status=StartStatus.FAILED,
            reason=StartFailure.SPAWN_ERROR,
            elapsed_seconds=elapsed,
            error=f"Cannot spawn {argv[0]}: {e}"
        ), None

    handle = ChildProcessHandle(
        process=process,
        command=argv,
        marker=readiness_marker,
        on_marker=on_marker
    )
    if on_spawn is not None:
        on_spawn(handle)
    handle.start_readers()

    async def wait_until_ready() -> None:
        await handle.marker_seen.wait()
        while not await check(endpoint):
            await asyncio.sleep(poll_interval)

    ready_task = asyncio.create_task(wait_until_ready())
    exit_task = asyncio.create_task(handle.wait())

    try:
        await asyncio.wait(
            {ready_task, exit_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED
        )
        exited = exit_task.done()
        ready = ready_task.done()
        if ready and not exited:
            # Surfaces a prober that broke its no-raise contract
            ready_task.result()
    finally:
        for task in (ready_task, exit_task):
            task.cancel()
        await asyncio.gather(ready_task, exit_task, return_exceptions=True)

    elapsed = round(time.monotonic() - start_time, 3)

    if exited:
        logger.error(
            "launch_early_exit",
            pid=handle.pid,
            exit_code=handle.returncode,
            output=handle.output_tail[-5:]
        )
        return StartOutcome(
            status=StartStatus.FAILED,
            reason=StartFailure.EARLY_EXIT,
            elapsed_seconds=elapsed,
            exit_code=handle.returncode,
            error=f"Server exited with code {handle.returncode} before becoming ready",
            pid=handle.pid
        ), handle

    if ready:
        logger.info("launch_ready", pid=handle.pid, elapsed=elapsed)
        return StartOutcome(
            status=StartStatus.READY,
            elapsed_seconds=elapsed,
            pid=handle.pid
        ), handle

    if handle.marker_seen.is_set():
        error = f"Health check did not pass within {timeout}s of launch"
    else:
        error = f"Readiness marker {readiness_marker!r} not seen within {timeout}s"

    logger.error("launch_timeout", pid=handle.pid, elapsed=elapsed, error=error)
    return StartOutcome(
        status=StartStatus.FAILED,
        reason=StartFailure.TIMEOUT,
        elapsed_seconds=elapsed,
        error=error,
        pid=handle.pid
    ), handle
