"""
Diagnostic pipeline: runs the selected stages in order and assembles the report.

Each stage runs behind a single catch-all boundary. Whatever goes wrong
inside a stage becomes that stage's failure result, and the next stage runs
anyway. Only a bad configuration stops a run, and it does so before any
network I/O.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Optional, Tuple

from .errors import ConfigurationError, ConnectivityFailure, ResolutionError
from .models import (
    STAGE_RESULT_TYPES,
    ConnectivityResult,
    DiagnosticReport,
    DnsResult,
    PortResult,
    PortScanResult,
    ProbeConfiguration,
    RouteInfo,
    Stage,
    StageResult,
    StageStatus,
    TraceResult,
    WebResult,
)
from .network.ping import Pinger
from .network.resolver import Resolver
from .network.scanner import PortScanCoordinator
from .network.trace import PathTracer
from .network.utils import connect_time_ms
from .network.web import WebProbe
from .routing import describe_route

logger = logging.getLogger(__name__)

FALLBACK_PORTS = (80, 443)

StageCallback = Callable[[Stage, StageResult], None]


@dataclass
class _RunContext:
    """Per-run state handed from stage to stage."""
    config: ProbeConfiguration
    resolved_address: Optional[str] = None
    on_trace_line: Optional[Callable[[str], None]] = None
    on_port: Optional[Callable[[PortResult], None]] = None


def _default_tracer(config: ProbeConfiguration) -> PathTracer:
    return PathTracer(
        pinger=Pinger(timeout_ms=config.fallback_timeout_ms),
        resolver=Resolver(reverse_names=False),
        fallback_max_ttl=config.fallback_max_ttl,
    )


class DiagnosticPipeline:
    """
    Connectivity -> DNS -> Ports -> Web -> Trace.

    Collaborators are created per run from the factories so that no state is
    shared between runs. Tests swap the factories for stubs.
    """

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        pinger_factory: Optional[Callable[[ProbeConfiguration], Pinger]] = None,
        scanner_factory: Optional[Callable[[ProbeConfiguration], PortScanCoordinator]] = None,
        web_probe_factory: Optional[Callable[[ProbeConfiguration], WebProbe]] = None,
        tracer_factory: Optional[Callable[[ProbeConfiguration], PathTracer]] = None,
        connect_probe: Callable[[str, int, int], Optional[float]] = connect_time_ms,
        route_lookup: Optional[Callable[[str], RouteInfo]] = describe_route,
    ):
        self.resolver = resolver or Resolver()
        self.pinger_factory = pinger_factory or (lambda cfg: Pinger(timeout_ms=cfg.timeout_ms))
        self.scanner_factory = scanner_factory or (lambda cfg: PortScanCoordinator(max_workers=cfg.max_scan_workers))
        self.web_probe_factory = web_probe_factory or (
            lambda cfg: WebProbe(timeout_ms=cfg.timeout_ms, verbose=cfg.verbose, verify_tls=cfg.verify_tls)
        )
        self.tracer_factory = tracer_factory or _default_tracer
        self.connect_probe = connect_probe
        self.route_lookup = route_lookup

        self._handlers: Dict[Stage, Callable[[_RunContext], StageResult]] = {
            Stage.CONNECTIVITY: self._connectivity,
            Stage.DNS: self._dns,
            Stage.PORTS: self._ports,
            Stage.WEB: self._web,
            Stage.TRACE: self._trace,
        }

    def run(
        self,
        config: ProbeConfiguration,
        on_stage: Optional[StageCallback] = None,
        on_trace_line: Optional[Callable[[str], None]] = None,
        on_port: Optional[Callable[[PortResult], None]] = None,
        on_stage_start: Optional[Callable[[Stage], None]] = None,
    ) -> DiagnosticReport:
        """Runs every enabled stage and returns the finished report."""
        if not isinstance(config, ProbeConfiguration):
            raise ConfigurationError("A ProbeConfiguration with a target is required")

        started_at = time.time()
        context = _RunContext(config=config, on_trace_line=on_trace_line, on_port=on_port)
        results: Dict[Stage, StageResult] = {}
        logger.info("Starting diagnostics for %s (stages: %s)", config.target,
                    ", ".join(s.value for s in config.stages))

        for stage in config.stages:
            if on_stage_start:
                on_stage_start(stage)
            result = self._run_stage(stage, context)
            results[stage] = result
            logger.info("Stage %s finished: %s", stage.value, result.status.value)
            if on_stage:
                on_stage(stage, result)

        return DiagnosticReport(
            target=config.target,
            configuration=config,
            results=MappingProxyType(results),
            started_at=started_at,
            finished_at=time.time(),
        )

    def _run_stage(self, stage: Stage, context: _RunContext) -> StageResult:
        try:
            return self._handlers[stage](context)
        except Exception as e:
            logger.warning("%s stage failed: %s", stage.value, e, exc_info=context.config.verbose)
            return STAGE_RESULT_TYPES[stage].failed(str(e) or e.__class__.__name__)

    # --- Stages ---

    def _connectivity(self, context: _RunContext) -> ConnectivityResult:
        config = context.config
        try:
            address = self.resolver.first_address(config.target)
        except ResolutionError as e:
            return ConnectivityResult.failed(str(e))
        context.resolved_address = address

        route = self._describe_route(address)
        try:
            latency, fallback_port = self._reach(address, config)
        except ConnectivityFailure as e:
            return ConnectivityResult(
                status=StageStatus.FAILURE,
                resolved_address=address,
                route=route,
                error=str(e),
            )
        return ConnectivityResult(
            status=StageStatus.SUCCESS if fallback_port is None else StageStatus.PARTIAL,
            resolved_address=address,
            reachable=True,
            latency_ms=latency,
            fallback_used=fallback_port is not None,
            fallback_port=fallback_port,
            route=route,
        )

    def _reach(self, address: str, config: ProbeConfiguration) -> Tuple[Optional[float], Optional[int]]:
        """
        Returns (latency_ms, fallback_port). Hosts that drop ping but serve
        traffic still count as reachable through a TCP connect to 80 or 443.
        """
        reachable, latency = self.pinger_factory(config).is_reachable(address)
        if reachable:
            return latency, None
        logger.info("%s did not answer ping, trying TCP ports %s", address, FALLBACK_PORTS)
        for port in FALLBACK_PORTS:
            elapsed = self.connect_probe(address, port, config.timeout_ms)
            if elapsed is not None:
                return elapsed, port
        raise ConnectivityFailure(
            f"No connectivity detected: {address} did not answer ping or TCP ports "
            + "/".join(str(p) for p in FALLBACK_PORTS)
        )

    def _describe_route(self, address: str) -> Optional[RouteInfo]:
        if self.route_lookup is None:
            return None
        try:
            return self.route_lookup(address)
        except Exception as e:
            logger.debug("Route lookup for %s failed: %s", address, e)
            return None

    def _dns(self, context: _RunContext) -> DnsResult:
        config = context.config
        try:
            records = self.resolver.resolve(config.target)
        except ResolutionError as e:
            return DnsResult.failed(str(e))

        reverse_name = records[0].canonical_name
        reverse_error = None
        if reverse_name is None and config.verbose:
            try:
                reverse_name = self.resolver.reverse_lookup(records[0].address)
            except OSError as e:
                logger.debug("Reverse lookup of %s failed: %s", records[0].address, e)
                reverse_error = str(e)
        return DnsResult(
            status=StageStatus.SUCCESS,
            addresses=records,
            reverse_name=reverse_name,
            reverse_error=reverse_error,
        )

    def _ports(self, context: _RunContext) -> PortScanResult:
        config = context.config
        host = context.resolved_address or config.target
        scanner = self.scanner_factory(config)
        return scanner.scan(host, config.ports, config.timeout_ms, on_result=context.on_port)

    def _web(self, context: _RunContext) -> WebResult:
        config = context.config
        # The name, not the address, so TLS SNI and virtual hosting behave.
        return self.web_probe_factory(config).check_all(config.target, config.web_ports)

    def _trace(self, context: _RunContext) -> TraceResult:
        config = context.config
        tracer = self.tracer_factory(config)
        return tracer.trace(
            config.target,
            max_hops=config.trace_max_hops,
            overall_timeout_seconds=config.trace_timeout_seconds,
            on_line=context.on_trace_line,
        )
