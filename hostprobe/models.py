from __future__ import annotations
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .errors import ConfigurationError

DEFAULT_PORTS: Tuple[int, ...] = (21, 22, 23, 25, 53, 80, 110, 143, 443, 465, 587, 993, 995, 3389)
DEFAULT_TIMEOUT_MS = 3000
DEFAULT_WEB_PORTS: Mapping[str, int] = MappingProxyType({"HTTP": 80, "HTTPS": 443})


class Stage(Enum):
    """Diagnostic stages, declared in pipeline order."""
    CONNECTIVITY = "connectivity"
    DNS = "dns"
    PORTS = "ports"
    WEB = "web"
    TRACE = "trace"


ALL_STAGES: Tuple[Stage, ...] = tuple(Stage)


class StageStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


class PortState(Enum):
    OPEN = "Open"
    CLOSED_OR_FILTERED = "Closed/Filtered"


@dataclass(frozen=True)
class ProbeConfiguration:
    """Immutable input to a single diagnostic run."""
    target: str
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    verbose: bool = False
    ports: Tuple[int, ...] = DEFAULT_PORTS
    stages: Tuple[Stage, ...] = ALL_STAGES
    trace_max_hops: int = 15
    trace_timeout_seconds: float = 30
    fallback_max_ttl: int = 10
    fallback_timeout_ms: int = 1000
    max_scan_workers: int = 64
    web_ports: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_WEB_PORTS))
    verify_tls: bool = True

    def __post_init__(self):
        target = (self.target or "").strip() if isinstance(self.target, str) else ""
        if not target:
            raise ConfigurationError("Target host is required")
        object.__setattr__(self, "target", target)

        for name in ("timeout_ms", "trace_max_hops", "fallback_max_ttl", "fallback_timeout_ms", "max_scan_workers"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"'{name}' must be a positive integer, got {value!r}")
        if isinstance(self.trace_timeout_seconds, bool) or not isinstance(self.trace_timeout_seconds, (int, float)) \
                or self.trace_timeout_seconds <= 0:
            raise ConfigurationError(f"'trace_timeout_seconds' must be positive, got {self.trace_timeout_seconds!r}")

        object.__setattr__(self, "ports", _validate_ports(self.ports, "ports"))

        if not isinstance(self.web_ports, Mapping):
            raise ConfigurationError("'web_ports' must map HTTP/HTTPS to a port number")
        web_ports = dict(self.web_ports)
        for protocol, port in web_ports.items():
            if protocol not in ("HTTP", "HTTPS"):
                raise ConfigurationError(f"Unknown web protocol '{protocol}'. Use HTTP or HTTPS.")
            _validate_ports([port], "web_ports")
        object.__setattr__(self, "web_ports", MappingProxyType(web_ports))

        stages = set(self.stages)
        for stage in stages:
            if not isinstance(stage, Stage):
                raise ConfigurationError(f"Unknown stage {stage!r}")
        # Canonical pipeline order, regardless of how the caller listed them.
        object.__setattr__(self, "stages", tuple(s for s in ALL_STAGES if s in stages))

    @classmethod
    def from_flags(
        cls,
        target: str,
        *,
        ping_only: bool = False,
        dns_check: bool = False,
        http_check: bool = False,
        traceroute: bool = False,
        port_scan: bool = False,
        **kwargs: Any,
    ) -> "ProbeConfiguration":
        """
        Builds a configuration from CLI-style stage flags.

        No selection flag runs every stage. --ping-only runs connectivity only.
        Otherwise connectivity plus each selected stage runs; port_scan is set
        when the caller asked for specific ports.
        """
        if ping_only:
            stages: Tuple[Stage, ...] = (Stage.CONNECTIVITY,)
        elif dns_check or http_check or traceroute or port_scan:
            selected = {Stage.CONNECTIVITY}
            if dns_check:
                selected.add(Stage.DNS)
            if port_scan:
                selected.add(Stage.PORTS)
            if http_check:
                selected.add(Stage.WEB)
            if traceroute:
                selected.add(Stage.TRACE)
            stages = tuple(s for s in ALL_STAGES if s in selected)
        else:
            stages = ALL_STAGES
        return cls(target=target, stages=stages, **kwargs)

    def runs(self, stage: Stage) -> bool:
        return stage in self.stages


def _validate_ports(ports: Any, name: str) -> Tuple[int, ...]:
    """Checks a port collection and removes duplicates, keeping first-seen order."""
    try:
        candidates = list(ports)
    except TypeError:
        raise ConfigurationError(f"'{name}' must be a list of port numbers")
    seen = set()
    result = []
    for port in candidates:
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigurationError(f"Invalid port {port!r} in '{name}'. Ports must be 1-65535.")
        if port not in seen:
            seen.add(port)
            result.append(port)
    return tuple(result)


@dataclass(frozen=True)
class AddressRecord:
    """One resolved address, with its canonical name when it differs from the literal."""
    address: str
    family: str
    canonical_name: Optional[str] = None


@dataclass(frozen=True)
class RouteInfo:
    """Local side of the path to a target."""
    source_address: Optional[str] = None
    interface: Optional[str] = None
    gateway: Optional[str] = None


@dataclass(frozen=True)
class PortResult:
    port: int
    service_label: str
    state: PortState

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN


@dataclass(frozen=True)
class ConnectivityResult:
    status: StageStatus
    resolved_address: Optional[str] = None
    reachable: bool = False
    latency_ms: Optional[float] = None
    fallback_used: bool = False
    fallback_port: Optional[int] = None
    route: Optional[RouteInfo] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "ConnectivityResult":
        return cls(status=StageStatus.FAILURE, error=error)


@dataclass(frozen=True)
class DnsResult:
    status: StageStatus
    addresses: Tuple[AddressRecord, ...] = ()
    reverse_name: Optional[str] = None
    reverse_error: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "DnsResult":
        return cls(status=StageStatus.FAILURE, error=error)


@dataclass(frozen=True)
class PortScanResult:
    status: StageStatus
    entries: Tuple[PortResult, ...] = ()
    open_ports: Tuple[int, ...] = ()
    error: Optional[str] = None

    @property
    def open_count(self) -> int:
        return len(self.open_ports)

    @classmethod
    def failed(cls, error: str) -> "PortScanResult":
        return cls(status=StageStatus.FAILURE, error=error)


@dataclass(frozen=True)
class WebCheck:
    """Outcome of a single HTTP or HTTPS request."""
    protocol: str
    url: str
    port: int
    status_code: Optional[int] = None
    elapsed_ms: Optional[float] = None
    server: Optional[str] = None
    content_type: Optional[str] = None
    location: Optional[str] = None
    error: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status_code is not None


@dataclass(frozen=True)
class WebResult:
    status: StageStatus
    per_protocol: Mapping[str, WebCheck] = field(default_factory=dict)
    error: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "per_protocol", MappingProxyType(dict(self.per_protocol)))

    @classmethod
    def failed(cls, error: str) -> "WebResult":
        return cls(status=StageStatus.FAILURE, error=error)


@dataclass(frozen=True)
class FallbackAttempt:
    """One manual reachability attempt made when the trace tool was unusable."""
    ttl: int
    address: Optional[str] = None
    reachable: bool = False
    elapsed_ms: Optional[float] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class TraceResult:
    status: StageStatus
    hops: Tuple[str, ...] = ()
    output: Tuple[str, ...] = ()
    completed: bool = False
    timed_out: bool = False
    used_fallback: bool = False
    return_code: Optional[int] = None
    command: Tuple[str, ...] = ()
    fallback_attempts: Tuple[FallbackAttempt, ...] = ()
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "TraceResult":
        return cls(status=StageStatus.FAILURE, error=error)


StageResult = Union[ConnectivityResult, DnsResult, PortScanResult, WebResult, TraceResult]

STAGE_RESULT_TYPES: Dict[Stage, Any] = {
    Stage.CONNECTIVITY: ConnectivityResult,
    Stage.DNS: DnsResult,
    Stage.PORTS: PortScanResult,
    Stage.WEB: WebResult,
    Stage.TRACE: TraceResult,
}


@dataclass(frozen=True)
class DiagnosticReport:
    """
    Results of one run. Only stages that ran are present; a stage that was
    not selected is absent rather than failed. There is no overall verdict,
    callers inspect each stage's status.
    """
    target: str
    configuration: ProbeConfiguration
    results: Mapping[Stage, StageResult]
    started_at: float
    finished_at: float

    def get(self, stage: Stage) -> Optional[StageResult]:
        return self.results.get(stage)

    @property
    def connectivity(self) -> Optional[ConnectivityResult]:
        return self.results.get(Stage.CONNECTIVITY)  # type: ignore[return-value]

    @property
    def dns(self) -> Optional[DnsResult]:
        return self.results.get(Stage.DNS)  # type: ignore[return-value]

    @property
    def ports(self) -> Optional[PortScanResult]:
        return self.results.get(Stage.PORTS)  # type: ignore[return-value]

    @property
    def web(self) -> Optional[WebResult]:
        return self.results.get(Stage.WEB)  # type: ignore[return-value]

    @property
    def trace(self) -> Optional[TraceResult]:
        return self.results.get(Stage.TRACE)  # type: ignore[return-value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "configuration": to_jsonable(self.configuration),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "results": {stage.value: to_jsonable(result) for stage, result in self.results.items()},
        }


def to_jsonable(obj: Any) -> Any:
    """Recursively converts dataclasses, enums and mappings into JSON-friendly values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        data = {f.name: to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
        if isinstance(obj, PortScanResult):
            data["open_count"] = obj.open_count
        return data
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {str(k.value if isinstance(k, Enum) else k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    return obj
