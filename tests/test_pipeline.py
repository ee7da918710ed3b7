# tests/test_pipeline.py
import pytest

from hostprobe.errors import ConfigurationError, ResolutionError
from hostprobe.models import (
    AddressRecord,
    ProbeConfiguration,
    RouteInfo,
    Stage,
    StageStatus,
    TraceResult,
    WebCheck,
    WebResult,
)
from hostprobe.network.scanner import PortScanCoordinator
from hostprobe.pipeline import DiagnosticPipeline


class FakeResolver:
    def __init__(self, addresses=("192.0.2.10",), canonical=None, reverse=None, error=None):
        self.addresses = addresses
        self.canonical = canonical
        self.reverse = reverse
        self.error = error

    def first_address(self, name):
        if self.error:
            raise ResolutionError(name, self.error)
        return self.addresses[0]

    def resolve(self, name):
        if self.error:
            raise ResolutionError(name, self.error)
        return tuple(AddressRecord(a, "IPv4", self.canonical) for a in self.addresses)

    def reverse_lookup(self, address):
        if self.reverse is None:
            raise OSError("Unknown host")
        return self.reverse


class FakePinger:
    def __init__(self, reachable=True):
        self.reachable = reachable
        self.pinged = []

    def is_reachable(self, host, ttl=None):
        self.pinged.append(host)
        return (True, 12.5) if self.reachable else (False, None)


class FakeWebProbe:
    def __init__(self):
        self.hosts = []

    def check_all(self, host, web_ports):
        self.hosts.append(host)
        return WebResult(
            status=StageStatus.SUCCESS,
            per_protocol={"HTTP": WebCheck("HTTP", f"http://{host}", 80, status_code=200, elapsed_ms=5.0)},
        )


class FakeTracer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def trace(self, host, max_hops=15, overall_timeout_seconds=30, on_line=None):
        self.calls.append((host, max_hops, overall_timeout_seconds))
        if self.error:
            raise self.error
        if on_line:
            on_line(" 1  gateway (10.0.0.1)  1.0 ms")
        return TraceResult(status=StageStatus.SUCCESS, hops=(" 1  gateway (10.0.0.1)  1.0 ms",), completed=True)


def make_pipeline(resolver=None, pinger=None, open_ports=(), connect=None, web=None, tracer=None, route=None):
    pinger = pinger or FakePinger()
    web = web or FakeWebProbe()
    tracer = tracer or FakeTracer()
    return DiagnosticPipeline(
        resolver=resolver or FakeResolver(),
        pinger_factory=lambda cfg: pinger,
        scanner_factory=lambda cfg: PortScanCoordinator(probe=lambda h, p, t: p in open_ports),
        web_probe_factory=lambda cfg: web,
        tracer_factory=lambda cfg: tracer,
        connect_probe=connect or (lambda host, port, timeout: None),
        route_lookup=route,
    )


def test_full_run_in_stage_order():
    started, finished = [], []
    pipeline = make_pipeline(open_ports=(80, 22))
    config = ProbeConfiguration(target="example.com", ports=(22, 80, 443))

    report = pipeline.run(config, on_stage=lambda s, r: finished.append(s), on_stage_start=started.append)

    assert list(report.results) == list(Stage)
    assert started == finished == list(Stage)
    assert report.connectivity.status is StageStatus.SUCCESS
    assert report.connectivity.latency_ms == 12.5
    assert report.ports.open_ports == (22, 80)
    assert report.web.status is StageStatus.SUCCESS
    assert report.trace.completed
    assert report.finished_at >= report.started_at


def test_only_selected_stages_appear():
    config = ProbeConfiguration.from_flags("example.com", http_check=True)
    report = make_pipeline().run(config)
    assert set(report.results) == {Stage.CONNECTIVITY, Stage.WEB}
    assert report.dns is None
    assert report.trace is None


def test_ping_failure_uses_tcp_fallback():
    attempts = []

    def connect(host, port, timeout):
        attempts.append(port)
        return 30.0 if port == 443 else None

    pipeline = make_pipeline(pinger=FakePinger(reachable=False), connect=connect)
    report = pipeline.run(ProbeConfiguration.from_flags("example.com", ping_only=True))

    result = report.connectivity
    assert attempts == [80, 443]
    assert result.status is StageStatus.PARTIAL
    assert result.reachable
    assert result.fallback_used
    assert result.fallback_port == 443
    assert result.latency_ms == 30.0


def test_unreachable_host_fails_connectivity_only():
    pipeline = make_pipeline(pinger=FakePinger(reachable=False))
    report = pipeline.run(ProbeConfiguration.from_flags("example.com", dns_check=True))
    assert report.connectivity.status is StageStatus.FAILURE
    assert report.connectivity.resolved_address == "192.0.2.10"
    assert "No connectivity detected" in report.connectivity.error
    assert report.dns.status is StageStatus.SUCCESS


def test_resolution_failure_is_contained():
    pipeline = make_pipeline(resolver=FakeResolver(error="Name or service not known"))
    report = pipeline.run(ProbeConfiguration(target="nonexistent.invalid"))

    assert report.connectivity.status is StageStatus.FAILURE
    assert "nonexistent.invalid" in report.connectivity.error
    assert report.dns.status is StageStatus.FAILURE
    assert report.dns.addresses == ()
    # Later stages still run against the name.
    assert report.ports is not None
    assert report.trace.status is StageStatus.SUCCESS


def test_ports_scan_the_resolved_address():
    hosts = []

    def probe(host, port, timeout):
        hosts.append(host)
        return False

    pipeline = make_pipeline()
    pipeline.scanner_factory = lambda cfg: PortScanCoordinator(probe=probe)
    pipeline.run(ProbeConfiguration.from_flags("example.com", port_scan=True, ports=(22,)))
    assert hosts == ["192.0.2.10"]


def test_web_uses_the_host_name():
    web = FakeWebProbe()
    make_pipeline(web=web).run(ProbeConfiguration.from_flags("example.com", http_check=True))
    assert web.hosts == ["example.com"]


def test_unexpected_stage_error_becomes_failure_result():
    tracer = FakeTracer(error=RuntimeError("trace exploded"))
    report = make_pipeline(tracer=tracer).run(ProbeConfiguration(target="example.com"))
    assert report.trace.status is StageStatus.FAILURE
    assert report.trace.error == "trace exploded"
    assert report.connectivity.status is StageStatus.SUCCESS


def test_trace_settings_and_live_lines():
    tracer = FakeTracer()
    lines = []
    config = ProbeConfiguration.from_flags("example.com", traceroute=True, trace_max_hops=7, trace_timeout_seconds=12)
    make_pipeline(tracer=tracer).run(config, on_trace_line=lines.append)
    assert tracer.calls == [("example.com", 7, 12)]
    assert lines == [" 1  gateway (10.0.0.1)  1.0 ms"]


def test_reverse_name_from_records():
    resolver = FakeResolver(canonical="host.example.net")
    report = make_pipeline(resolver=resolver).run(ProbeConfiguration.from_flags("example.com", dns_check=True))
    assert report.dns.reverse_name == "host.example.net"
    assert report.dns.reverse_error is None


def test_verbose_reverse_lookup_failure_is_recorded():
    config = ProbeConfiguration.from_flags("example.com", dns_check=True, verbose=True)
    report = make_pipeline().run(config)
    assert report.dns.reverse_name is None
    assert report.dns.reverse_error == "Unknown host"


def test_route_is_attached_and_lookup_errors_ignored():
    route = RouteInfo(source_address="10.0.0.5", interface="eth0", gateway="10.0.0.1")
    report = make_pipeline(route=lambda address: route).run(ProbeConfiguration.from_flags("example.com", ping_only=True))
    assert report.connectivity.route == route

    def broken(address):
        raise OSError("no route")

    report = make_pipeline(route=broken).run(ProbeConfiguration.from_flags("example.com", ping_only=True))
    assert report.connectivity.route is None
    assert report.connectivity.status is StageStatus.SUCCESS


def test_missing_configuration_is_rejected():
    with pytest.raises(ConfigurationError):
        make_pipeline().run(None)


def test_report_is_read_only_and_serialisable():
    report = make_pipeline(open_ports=(80,)).run(ProbeConfiguration(target="example.com", ports=(80,)))
    with pytest.raises(TypeError):
        report.results[Stage.DNS] = None  # type: ignore[index]
    data = report.to_dict()
    assert data["target"] == "example.com"
    assert data["results"]["ports"]["open_count"] == 1
    assert data["results"]["connectivity"]["status"] == "success"
    assert data["configuration"]["stages"] == [s.value for s in Stage]


def test_repeated_runs_give_the_same_sets():
    pipeline = make_pipeline(resolver=FakeResolver(addresses=("192.0.2.10", "192.0.2.11")), open_ports=(443, 22))
    config = ProbeConfiguration(target="example.com", ports=(22, 80, 443))
    first = pipeline.run(config)
    second = pipeline.run(config)
    assert first.ports.open_ports == second.ports.open_ports == (22, 443)
    assert {r.address for r in first.dns.addresses} == {r.address for r in second.dns.addresses}
    assert first.results is not second.results
