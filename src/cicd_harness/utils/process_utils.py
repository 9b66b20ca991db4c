# Este archivo contiene el manejo del proceso hijo: el handle con sus lectores
# de stdout/stderr, el detector del marcador de arranque y las señales al árbol
# de procesos.

"""
Child process handle and process-tree signalling.

The handle owns the spawned server process and the tasks that drain its
output. Output is decoded incrementally and scanned with a rolling buffer so
a readiness marker split across reads is still found.
"""
import asyncio  # Subprocesos y tareas asíncronas
import codecs  # Decodificador incremental para chunks de bytes
import time  # Medición de tiempo
from dataclasses import dataclass, field  # Crear clases de datos simples
from typing import Callable, List, Optional  # Type hints

import psutil  # Enumeración y señales del árbol de procesos

from .logging import get_logger  # Logger estructurado

logger = get_logger(__name__)

READ_CHUNK_SIZE = 4096
OUTPUT_TAIL_LINES = 50


class MarkerScanner:
    """Finds a literal marker in a stream fed chunk by chunk."""

    def __init__(self, marker: str):
        self.marker = marker
        self.found = False
        self._tail = ""

    def feed(self, text: str) -> bool:
        """Feed decoded text; returns True once the marker has been seen."""
        if self.found:
            return True

        window = self._tail + text
        if self.marker in window:
            self.found = True
            self._tail = ""
            return True

        keep = len(self.marker) - 1
        self._tail = window[-keep:] if keep else ""
        return False


@dataclass
class ChildProcessHandle:
    """
    Running server process owned by the launcher, then by the terminator.

    Must not be used after the terminator confirmed the exit.
    """
    process: asyncio.subprocess.Process
    command: List[str]
    marker: str
    started_at: float = field(default_factory=time.monotonic)
    output_tail: List[str] = field(default_factory=list)
    marker_seen: asyncio.Event = field(default_factory=asyncio.Event)
    on_marker: Optional[Callable[[], None]] = None
    stop_task: Optional[asyncio.Task] = None
    _readers: List[asyncio.Task] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self):
        self._scanner = MarkerScanner(self.marker)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def exited(self) -> bool:
        return self.process.returncode is not None

    def start_readers(self) -> None:
        """Start draining stdout (scanned for the marker) and stderr."""
        if self.process.stdout is not None:
            self._readers.append(asyncio.create_task(
                self._drain(self.process.stdout, "server_stdout", scan=True)
            ))
        if self.process.stderr is not None:
            self._readers.append(asyncio.create_task(
                self._drain(self.process.stderr, "server_stderr", scan=False)
            ))

    async def _drain(self, stream: asyncio.StreamReader, event: str, scan: bool) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""

        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break

            text = decoder.decode(chunk)
            if scan and not self.marker_seen.is_set() and self._scanner.feed(text):
                self._marker_found()

            pending += text
            *lines, pending = pending.split("\n")
            for line in lines:
                self._record_line(event, line)

        pending += decoder.decode(b"", final=True)
        if pending:
            if scan and not self.marker_seen.is_set() and self._scanner.feed(pending):
                self._marker_found()
            self._record_line(event, pending)

    def _marker_found(self) -> None:
        self.marker_seen.set()
        logger.info("readiness_marker_seen", pid=self.pid, marker=self.marker)
        if self.on_marker is not None:
            self.on_marker()

    def _record_line(self, event: str, line: str) -> None:
        line = line.rstrip("\r")
        self.output_tail.append(line)
        del self.output_tail[:-OUTPUT_TAIL_LINES]
        logger.debug(event, pid=self.pid, line=line)

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await self.process.wait()

    async def close_readers(self, timeout: float = 1.0) -> None:
        """Let the readers hit EOF, cancelling them if they linger."""
        if not self._readers:
            return

        _, pending = await asyncio.wait(self._readers, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers.clear()


def list_process_tree(pid: int) -> List[psutil.Process]:
    """Return the process with its descendants (descendants first)."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return []

    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []
    except psutil.Error as e:
        # The parent alone can still be signalled
        logger.warning("process_tree_unreadable", pid=pid, error=str(e))
        children = []

    return [*children, parent]


def signal_process_tree(processes: List[psutil.Process], kill: bool = False) -> int:
    """
    Send SIGTERM (or SIGKILL when ``kill``) to every process in the list.

    Processes that are already gone count as handled.

    Returns:
        Number of processes that were signalled
    """
    signalled = 0

    for proc in processes:
        try:
            if kill:
                proc.kill()
            else:
                proc.terminate()
            signalled += 1
        except psutil.NoSuchProcess:
            logger.debug("process_already_gone", pid=proc.pid)
        except psutil.AccessDenied:
            logger.warning("process_signal_denied", pid=proc.pid, signal="SIGKILL" if kill else "SIGTERM")

    return signalled


async def reap_descendants(processes: List[psutil.Process], timeout: float = 1.0) -> None:
    """Wait for leftover descendants, killing any that survive the timeout."""
    if not processes:
        return

    _, alive = await asyncio.to_thread(psutil.wait_procs, processes, timeout=timeout)
    for proc in alive:
        logger.warning("descendant_survived", pid=proc.pid)
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            logger.warning("process_signal_denied", pid=proc.pid, signal="SIGKILL")
