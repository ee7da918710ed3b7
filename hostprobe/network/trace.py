"""
Path tracing through the platform's traceroute/tracert command.

The child process is treated as a scoped resource: it is started at the
beginning of a trace and is always reaped before trace() returns, killed
first if it is still running. When the command cannot be launched, a coarse
TTL-stepped reachability probe stands in for it.
"""
from __future__ import annotations
import logging
import platform
import queue
import re
import subprocess
import threading
import time
from typing import Callable, List, Optional, Tuple

import psutil

from ..errors import ProcessFailure, ResolutionError
from ..models import FallbackAttempt, StageStatus, TraceResult
from .ping import Pinger
from .resolver import Resolver

logger = logging.getLogger(__name__)

HOP_LINE = re.compile(r"^\s*\d+")

_INSTALL_HINTS = {
    "linux": "install the 'traceroute' package (e.g. 'sudo apt-get install -y traceroute')",
    "darwin": "traceroute ships with macOS; check that /usr/sbin is on PATH",
    "windows": "tracert ships with Windows; check that System32 is on PATH",
}

_EOF = None


def build_trace_command(host: str, max_hops: int, system: Optional[str] = None) -> List[str]:
    """Returns the trace command with the platform's hop-limit flag."""
    system = (system or platform.system()).lower()
    if system == "windows":
        return ["tracert", "-h", str(max_hops), host]
    return ["traceroute", "-m", str(max_hops), host]


def _read_lines(stream, lines: "queue.Queue[Optional[str]]") -> None:
    """Pumps lines from the child's output into a queue until EOF."""
    try:
        for line in iter(stream.readline, ""):
            lines.put(line.rstrip("\r\n"))
    except (OSError, ValueError):
        # Stream closed underneath us while the process was being killed.
        pass
    finally:
        lines.put(_EOF)


def _kill_process_tree(process: subprocess.Popen) -> None:
    """Kills the child and anything it spawned."""
    try:
        children = psutil.Process(process.pid).children(recursive=True)
    except psutil.Error:
        children = []
    for child in children:
        try:
            child.kill()
        except psutil.Error:
            pass
    try:
        process.kill()
    except OSError:
        pass


class PathTracer:
    """Runs a trace with a hop cap and an overall deadline."""

    def __init__(
        self,
        pinger: Optional[Pinger] = None,
        resolver: Optional[Resolver] = None,
        fallback_max_ttl: int = 10,
        command_builder: Callable[[str, int], List[str]] = build_trace_command,
    ):
        self.pinger = pinger or Pinger(timeout_ms=1000)
        self.resolver = resolver or Resolver(reverse_names=False)
        self.fallback_max_ttl = fallback_max_ttl
        self.command_builder = command_builder

    def trace(
        self,
        host: str,
        max_hops: int = 15,
        overall_timeout_seconds: float = 30,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> TraceResult:
        deadline = time.monotonic() + overall_timeout_seconds
        command = self.command_builder(host, max_hops)
        try:
            hops, output, return_code, timed_out = self._run_command(command, max_hops, deadline, on_line)
        except ProcessFailure as e:
            logger.warning("Trace command unavailable: %s", e)
            return self._fallback(host, command, e, deadline, on_line)

        # Reaching the hop cap ends the trace even if the tool was still running.
        capped = len(hops) >= max_hops
        completed = not timed_out and (return_code == 0 or capped)
        error = None
        if timed_out:
            error = f"Trace timed out after {overall_timeout_seconds}s"
        elif return_code != 0 and not capped:
            error = f"Trace command exited with status {return_code}"
            if not hops:
                # Nothing usable came out of the tool; degrade to the manual probe.
                failure = ProcessFailure(error, return_code=return_code)
                return self._fallback(host, command, failure, deadline, on_line, output=output)

        if completed:
            status = StageStatus.SUCCESS
        elif hops:
            status = StageStatus.PARTIAL
        else:
            status = StageStatus.FAILURE
        return TraceResult(
            status=status,
            hops=tuple(hops),
            output=tuple(output),
            completed=completed,
            timed_out=timed_out,
            return_code=return_code,
            command=tuple(command),
            error=error,
        )

    def _run_command(
        self,
        command: List[str],
        max_hops: int,
        deadline: float,
        on_line: Optional[Callable[[str], None]],
    ) -> Tuple[List[str], List[str], Optional[int], bool]:
        """Returns (hop lines, all lines, return code, timed out)."""
        creationflags = getattr(subprocess, "CREATE_NO_WINDOW", 0) if platform.system() == "Windows" else 0
        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,
                creationflags=creationflags,
            )
        except OSError as e:
            hint = _INSTALL_HINTS.get(platform.system().lower())
            message = f"Could not start '{command[0]}': {e}"
            if hint and isinstance(e, FileNotFoundError):
                message = f"{message}; {hint}"
            raise ProcessFailure(message) from e

        logger.debug("Started trace process %d: %s", process.pid, " ".join(command))
        hops: List[str] = []
        output: List[str] = []
        timed_out = False
        lines: "queue.Queue[Optional[str]]" = queue.Queue()
        reader = threading.Thread(target=_read_lines, args=(process.stdout, lines), daemon=True)
        reader.start()
        try:
            while len(hops) < max_hops:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    line = lines.get(timeout=remaining)
                except queue.Empty:
                    timed_out = True
                    break
                if line is _EOF:
                    break
                output.append(line)
                if HOP_LINE.match(line):
                    hops.append(line)
                if on_line:
                    on_line(line)

            if not timed_out and len(hops) < max_hops:
                try:
                    process.wait(timeout=max(0.0, deadline - time.monotonic()))
                except subprocess.TimeoutExpired:
                    timed_out = True
        finally:
            if process.poll() is None:
                logger.debug("Killing trace process %d", process.pid)
                _kill_process_tree(process)
            process.wait()
            reader.join(timeout=1.0)
            # A grandchild that survived the kill can keep the pipe open; closing
            # it under a blocked reader would block us too.
            if process.stdout and not reader.is_alive():
                process.stdout.close()

        return hops, output, None if timed_out else process.returncode, timed_out

    def _fallback(
        self,
        host: str,
        command: List[str],
        failure: ProcessFailure,
        deadline: float,
        on_line: Optional[Callable[[str], None]],
        output: Optional[List[str]] = None,
    ) -> TraceResult:
        """
        Steps the TTL up from 1 and checks reachability each time, stopping at
        the first answer. That answer is reported as a single approximate hop.
        The steps share the trace deadline; each check gets at most the time left.
        """
        attempts: List[FallbackAttempt] = []
        hops: List[str] = []
        error = str(failure)
        for ttl in range(1, self.fallback_max_ttl + 1):
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            if remaining_ms <= 0:
                error = f"{error}; reachability steps stopped at the trace deadline after {len(attempts)} attempt(s)"
                logger.debug("Trace fallback for %s stopped at ttl=%d, deadline reached", host, ttl)
                break
            try:
                address = self.resolver.first_address(host)
            except ResolutionError as e:
                attempts.append(FallbackAttempt(ttl=ttl, error=str(e)))
                continue
            timeout_ms = min(self.pinger.timeout_ms, remaining_ms)
            start = time.monotonic()
            reachable, latency = self.pinger.is_reachable(address, ttl=ttl, timeout_ms=timeout_ms)
            elapsed = latency if latency is not None else round((time.monotonic() - start) * 1000, 1)
            attempts.append(FallbackAttempt(ttl=ttl, address=address, reachable=reachable, elapsed_ms=elapsed))
            if reachable:
                line = f"{ttl:>2}  {host} ({address})  {elapsed} ms"
                hops.append(line)
                if on_line:
                    on_line(line)
                break

        return TraceResult(
            status=StageStatus.PARTIAL if hops else StageStatus.FAILURE,
            hops=tuple(hops),
            output=tuple(output or ()),
            completed=False,
            used_fallback=True,
            return_code=failure.return_code,
            command=tuple(command),
            fallback_attempts=tuple(attempts),
            error=error,
        )
