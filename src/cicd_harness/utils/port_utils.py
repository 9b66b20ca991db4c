"""
TCP port polling.

A refused connection means nobody is listening, so the port is free. An
accepted connection means the port is still held. A host name may resolve
to several addresses (``localhost`` on dual-stack machines); each one is
tried on its own.
"""
import asyncio
import errno
import socket
import time
from typing import List

from ..exceptions import PortStillBound
from .logging import get_logger

logger = get_logger(__name__)


def _is_refused(error: OSError) -> bool:
    return isinstance(error, ConnectionRefusedError) or error.errno == errno.ECONNREFUSED


async def _resolve(host: str, port: int, timeout: float) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await asyncio.wait_for(
        loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
        timeout=timeout
    )
    # Keep resolver order, drop duplicates
    return list(dict.fromkeys(info[4][0] for info in infos))


async def _connect_once(address: str, port: int, timeout: float) -> bool | None:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.debug("port_connect_timeout", address=address, port=port)
        return None
    except OSError as e:
        if _is_refused(e):
            return True
        logger.debug("port_connect_error", address=address, port=port, error=str(e))
        return None

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return False


async def is_port_free(port: int, host: str = "127.0.0.1", connect_timeout: float = 1.0) -> bool | None:
    """
    Try one TCP connect to every address ``host`` resolves to.

    Returns:
        True if every address refused the connection, False if any address
        accepted it, None if the result was inconclusive (timeout, DNS or
        socket error)
    """
    try:
        addresses = await _resolve(host, port, connect_timeout)
    except asyncio.TimeoutError:
        logger.debug("port_resolve_timeout", host=host, port=port)
        return None
    except OSError as e:
        logger.debug("port_resolve_error", host=host, port=port, error=str(e))
        return None

    results = [await _connect_once(address, port, connect_timeout) for address in addresses]

    if any(result is False for result in results):
        return False
    if results and all(result is True for result in results):
        return True
    return None


async def wait_for_port_free(
    port: int,
    host: str = "127.0.0.1",
    timeout: float = 10.0,
    interval: float = 0.2
) -> float:
    """
    Poll until nothing accepts connections on (host, port).

    Transient errors are retried; only a refused connection ends the wait.

    Args:
        port: Port to watch
        host: Host to connect to (prefer a numeric address)
        timeout: Deadline in seconds
        interval: Fixed delay between attempts

    Returns:
        Seconds waited

    Raises:
        PortStillBound: If the port did not become free before the deadline
    """
    start = time.monotonic()
    deadline = start + timeout
    attempts = 0
    occupied = False

    while True:
        attempts += 1
        remaining = deadline - time.monotonic()
        free = await is_port_free(port, host, connect_timeout=max(0.05, min(1.0, remaining)))

        if free:
            elapsed = round(time.monotonic() - start, 3)
            logger.debug("port_free", host=host, port=port, attempts=attempts, elapsed=elapsed)
            return elapsed

        occupied = free is False
        if time.monotonic() + interval > deadline:
            break
        await asyncio.sleep(interval)

    elapsed = round(time.monotonic() - start, 2)
    logger.warning("port_still_bound", host=host, port=port, attempts=attempts, elapsed=elapsed)

    raise PortStillBound(
        f"Port {host}:{port} still {'in use' if occupied else 'unresolved'} after {elapsed}s",
        context={"host": host, "port": port, "attempts": attempts, "elapsed": elapsed}
    )
