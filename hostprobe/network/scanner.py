from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Optional

from ..catalog import service_label
from ..models import PortResult, PortScanResult, PortState, StageStatus
from .utils import try_connect

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 64

ProbeFunc = Callable[[str, int, int], bool]


class PortScanCoordinator:
    """
    Runs one socket probe per port in parallel and waits for all of them.

    Every probe carries its own timeout, so a slow port never holds up the
    others. The pool is sized to the port list and capped at max_workers.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS, probe: ProbeFunc = try_connect):
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self.max_workers = max_workers
        self.probe = probe

    def scan(
        self,
        host: str,
        ports: Iterable[int],
        timeout_ms: int,
        on_result: Optional[Callable[[PortResult], None]] = None,
    ) -> PortScanResult:
        port_list = list(dict.fromkeys(ports))
        if not port_list:
            return PortScanResult(status=StageStatus.SUCCESS)

        open_ports: List[int] = []
        lock = threading.Lock()
        states: Dict[int, PortState] = {}

        def _probe(port: int) -> PortState:
            if self.probe(host, port, timeout_ms):
                with lock:
                    open_ports.append(port)
                return PortState.OPEN
            return PortState.CLOSED_OR_FILTERED

        workers = min(len(port_list), self.max_workers)
        logger.debug("Scanning %d ports on %s with %d workers", len(port_list), host, workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="portscan") as executor:
            futures = {executor.submit(_probe, port): port for port in port_list}
            for future in as_completed(futures):
                port = futures[future]
                try:
                    state = future.result()
                except Exception as e:
                    logger.error(f"Probe of port {port} failed with exception: {e}")
                    state = PortState.CLOSED_OR_FILTERED
                states[port] = state
                if on_result:
                    try:
                        on_result(PortResult(port, service_label(port), state))
                    except Exception as e:
                        logger.error(f"Result callback for port {port} failed: {e}")

        entries = tuple(PortResult(port, service_label(port), states[port]) for port in port_list)
        return PortScanResult(
            status=StageStatus.SUCCESS,
            entries=entries,
            open_ports=tuple(sorted(open_ports)),
        )
