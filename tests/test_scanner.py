# tests/test_scanner.py
import threading
import time

import pytest

from hostprobe.models import PortState, StageStatus
from hostprobe.network.scanner import PortScanCoordinator


def test_scan_reports_open_and_closed_ports(listening_port, closed_port):
    scanner = PortScanCoordinator()
    result = scanner.scan("127.0.0.1", [closed_port, listening_port], 1000)

    assert result.status is StageStatus.SUCCESS
    assert [e.port for e in result.entries] == [closed_port, listening_port]
    assert result.open_ports == (listening_port,)
    assert result.open_count == 1
    states = {e.port: e.state for e in result.entries}
    assert states[listening_port] is PortState.OPEN
    assert states[closed_port] is PortState.CLOSED_OR_FILTERED


def test_open_ports_are_sorted_and_labelled():
    scanner = PortScanCoordinator(probe=lambda host, port, timeout: port in (443, 22))
    result = scanner.scan("example.com", [443, 25, 22], 100)
    assert result.open_ports == (22, 443)
    assert [e.service_label for e in result.entries] == ["HTTPS", "SMTP", "SSH"]


def test_empty_port_list():
    result = PortScanCoordinator().scan("example.com", [], 100)
    assert result.status is StageStatus.SUCCESS
    assert result.entries == ()
    assert result.open_count == 0


def test_duplicate_ports_are_probed_once():
    calls = []
    lock = threading.Lock()

    def probe(host, port, timeout):
        with lock:
            calls.append(port)
        return False

    result = PortScanCoordinator(probe=probe).scan("example.com", [80, 80, 443], 100)
    assert sorted(calls) == [80, 443]
    assert len(result.entries) == 2


def test_probes_run_in_parallel():
    def slow_probe(host, port, timeout):
        time.sleep(0.3)
        return True

    start = time.monotonic()
    result = PortScanCoordinator(max_workers=16, probe=slow_probe).scan("example.com", range(1, 11), 1000)
    assert time.monotonic() - start < 2.0
    assert result.open_count == 10


def test_failing_probe_marks_port_closed_and_scan_continues():
    def probe(host, port, timeout):
        if port == 23:
            raise RuntimeError("boom")
        return port == 22

    result = PortScanCoordinator(probe=probe).scan("example.com", [22, 23], 100)
    assert result.status is StageStatus.SUCCESS
    assert result.open_ports == (22,)
    assert {e.port: e.state for e in result.entries}[23] is PortState.CLOSED_OR_FILTERED


def test_on_result_called_once_per_port():
    seen = []
    PortScanCoordinator(probe=lambda h, p, t: p == 80).scan("example.com", [80, 81, 82], 100, on_result=seen.append)
    assert sorted(r.port for r in seen) == [80, 81, 82]
    assert [r.is_open for r in sorted(seen, key=lambda r: r.port)] == [True, False, False]


def test_invalid_worker_count():
    with pytest.raises(ValueError):
        PortScanCoordinator(max_workers=0)


def test_failing_callback_does_not_discard_the_scan():
    def on_result(result):
        raise RuntimeError("display went away")

    result = PortScanCoordinator(probe=lambda h, p, t: p == 22).scan("example.com", [22, 80], 100, on_result=on_result)
    assert result.status is StageStatus.SUCCESS
    assert result.open_ports == (22,)
    assert len(result.entries) == 2
