import logging
import os
import subprocess
import sys
import threading
import time
from typing import List, Optional

import psutil

from mediadl.core.errors import ProcessFailed, ProcessTimeout
from mediadl.core.interfaces import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 180.0
DEFAULT_MAX_OUTPUT = 10 * 1024 * 1024


class _BoundedReader(threading.Thread):
    """Drains one pipe into memory, keeping at most `limit` bytes."""

    def __init__(self, stream, limit: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.size = 0
        self.truncated = False
        self._chunks: List[bytes] = []

    def run(self):
        try:
            for chunk in iter(lambda: self.stream.read(64 * 1024), b""):
                room = self.limit - self.size
                if room <= 0:
                    # Keep reading so the child never blocks on a full pipe
                    self.truncated = True
                    continue
                if len(chunk) > room:
                    chunk = chunk[:room]
                    self.truncated = True
                self._chunks.append(chunk)
                self.size += len(chunk)
        except (OSError, ValueError):
            pass
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


def _kill_tree(pid: int):
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    procs = parent.children(recursive=True) + [parent]
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(procs, timeout=5)


class ProcessExecutor(ProcessRunner):
    """
    Runs external commands with a hard deadline.

    One timer is armed per invocation. When it fires the child and all of
    its descendants are killed and ProcessTimeout is raised; on normal exit
    the timer is cancelled. stdout/stderr are drained by reader threads into
    bounded buffers.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, max_output_bytes: int = DEFAULT_MAX_OUTPUT):
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    def run(self, command: List[str], timeout: Optional[float] = None) -> ProcessResult:
        timeout = timeout or self.timeout
        name = os.path.basename(command[0]) if command else "<empty>"
        started = time.monotonic()

        creationflags = 0
        if sys.platform == "win32":
            creationflags = subprocess.CREATE_NEW_PROCESS_GROUP

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                creationflags=creationflags,
            )
        except FileNotFoundError:
            raise ProcessFailed(name, 127, f"{command[0]}: command not found")
        except PermissionError as e:
            raise ProcessFailed(name, 126, str(e))

        out_reader = _BoundedReader(process.stdout, self.max_output_bytes)
        err_reader = _BoundedReader(process.stderr, self.max_output_bytes)
        out_reader.start()
        err_reader.start()

        timed_out = threading.Event()

        def _expire():
            timed_out.set()
            logger.warning("killing %s (pid=%s) after %.0fs", name, process.pid, timeout)
            _kill_tree(process.pid)

        timer = threading.Timer(timeout, _expire)
        timer.daemon = True
        timer.start()
        try:
            returncode = process.wait()
        finally:
            timer.cancel()
            out_reader.join(timeout=5)
            err_reader.join(timeout=5)

        elapsed = time.monotonic() - started
        if timed_out.is_set():
            raise ProcessTimeout(name, timeout)

        stdout, stderr = out_reader.text(), err_reader.text()
        if out_reader.truncated or err_reader.truncated:
            logger.debug("%s output truncated at %d bytes", name, self.max_output_bytes)

        logger.debug("%s exited code=%s elapsed=%.2fs", name, returncode, elapsed)
        if returncode != 0:
            raise ProcessFailed(name, returncode, stderr)

        return ProcessResult(stdout=stdout, stderr=stderr, returncode=returncode, elapsed=elapsed)
