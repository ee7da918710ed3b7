"""
Human-readable and JSON rendering of diagnostic reports.
"""
from __future__ import annotations
import json
from typing import Callable, Dict, List

from .models import (
    ConnectivityResult,
    DiagnosticReport,
    DnsResult,
    PortScanResult,
    ProbeConfiguration,
    Stage,
    StageResult,
    TraceResult,
    WebResult,
)

NOT_AVAILABLE = "Not available"

STAGE_TITLES: Dict[Stage, str] = {
    Stage.CONNECTIVITY: "Connectivity",
    Stage.DNS: "DNS resolution",
    Stage.PORTS: "Common service ports",
    Stage.WEB: "Web services",
    Stage.TRACE: "Traceroute",
}


def format_header(config: ProbeConfiguration) -> List[str]:
    return [
        "=== Host Probe ===",
        f"Target: {config.target}",
        f"Timeout: {config.timeout_ms}ms",
        f"Stages: {', '.join(STAGE_TITLES[s] for s in config.stages)}",
        "",
    ]


def format_footer() -> List[str]:
    return ["=== Probe Complete ==="]


def _error_text(error, verbose: bool, fallback: str = NOT_AVAILABLE) -> str:
    return error if (verbose and error) else fallback


def _connectivity_lines(result: ConnectivityResult, verbose: bool) -> List[str]:
    lines = []
    if result.resolved_address:
        lines.append(f"  IP Address: {result.resolved_address}")
    if result.reachable and not result.fallback_used:
        lines.append(f"  [OK] Host is reachable (ping: {result.latency_ms}ms)")
    elif result.reachable:
        lines.append("  [WARN] Host ping failed (may be firewalled)")
        lines.append(f"  [OK] Alternative connectivity via port {result.fallback_port} successful "
                     f"({result.latency_ms}ms)")
    elif result.resolved_address:
        lines.append("  [FAIL] No connectivity detected")
        if verbose and result.error:
            lines.append(f"    {result.error}")
    else:
        lines.append(f"  [FAIL] Connectivity test failed: {_error_text(result.error, True)}")
    route = result.route
    if route and (route.source_address or route.gateway):
        parts = []
        if route.source_address:
            parts.append(f"from {route.source_address}")
        if route.interface:
            parts.append(f"on {route.interface}")
        if route.gateway:
            parts.append(f"via gateway {route.gateway}")
        lines.append(f"  Route: {' '.join(parts)}")
    return lines


def _dns_lines(result: DnsResult, verbose: bool) -> List[str]:
    if not result.addresses:
        return [f"  [FAIL] DNS resolution failed: {_error_text(result.error, True)}"]
    lines = ["  [OK] DNS resolution successful", "  Resolved addresses:"]
    for record in result.addresses:
        suffix = f" ({record.canonical_name})" if record.canonical_name else ""
        lines.append(f"    - {record.address} [{record.family}]{suffix}")
    if result.reverse_name:
        lines.append(f"  Reverse DNS: {result.reverse_name}")
    elif verbose and result.reverse_error:
        lines.append(f"  Reverse DNS lookup failed: {result.reverse_error}")
    return lines


def _port_lines(result: PortScanResult, verbose: bool) -> List[str]:
    if result.error:
        return [f"  [FAIL] Port scan failed: {_error_text(result.error, verbose)}"]
    lines = []
    for entry in sorted(result.entries, key=lambda e: e.port):
        if entry.is_open:
            lines.append(f"  [OK] Port {entry.port} ({entry.service_label}) - OPEN")
        elif verbose:
            lines.append(f"  [--] Port {entry.port} ({entry.service_label}) - CLOSED/FILTERED")
    lines.append(f"  Summary: {result.open_count} open ports found: {list(result.open_ports)}")
    return lines


def _web_lines(result: WebResult, verbose: bool) -> List[str]:
    if not result.per_protocol:
        return [f"  [FAIL] Web checks failed: {_error_text(result.error, verbose)}"]
    lines = []
    for protocol, check in result.per_protocol.items():
        if check.available:
            lines.append(f"  [OK] {protocol} (port {check.port}) - Response: "
                         f"{check.status_code} ({check.elapsed_ms}ms)")
            if check.server:
                lines.append(f"    Server: {check.server}")
            if check.content_type:
                lines.append(f"    Content-Type: {check.content_type}")
            if check.location:
                lines.append(f"    Location: {check.location}")
        elif verbose and check.error:
            lines.append(f"  [FAIL] {protocol} (port {check.port}) - Failed: {check.error}")
        else:
            lines.append(f"  [FAIL] {protocol} (port {check.port}) - {NOT_AVAILABLE}")
    return lines


def _trace_lines(result: TraceResult, verbose: bool, include_output: bool = True) -> List[str]:
    lines = []
    if include_output:
        lines.extend(f"  {line}" for line in result.output)
        # Fallback hops are synthesised, they never appear in the tool output.
        if result.used_fallback:
            lines.extend(f"  {line}" for line in result.hops)
    if result.used_fallback:
        lines.append(f"  [FAIL] Traceroute failed: {_error_text(result.error, True)}")
        lines.append(f"  Simple connectivity test: {len(result.fallback_attempts)} attempt(s), "
                     + ("target answered" if result.hops else "no answer"))
        if verbose:
            for attempt in result.fallback_attempts:
                outcome = "reachable" if attempt.reachable else (attempt.error or "no answer")
                lines.append(f"    ttl={attempt.ttl} {attempt.address or '-'}: {outcome}")
    elif result.timed_out:
        lines.append("  [WARN] Traceroute timed out")
    elif not result.completed:
        lines.append(f"  [WARN] {_error_text(result.error, True, 'Traceroute did not complete')}")
    else:
        lines.append(f"  Hops: {len(result.hops)}")
    return lines


_FORMATTERS: Dict[Stage, Callable[[StageResult, bool], List[str]]] = {
    Stage.CONNECTIVITY: _connectivity_lines,  # type: ignore[dict-item]
    Stage.DNS: _dns_lines,  # type: ignore[dict-item]
    Stage.PORTS: _port_lines,  # type: ignore[dict-item]
    Stage.WEB: _web_lines,  # type: ignore[dict-item]
}


def format_title(stage: Stage) -> str:
    return f"[{STAGE_TITLES[stage]}]"


def format_stage(stage: Stage, result: StageResult, verbose: bool = False,
                 include_title: bool = True, include_trace_output: bool = True) -> List[str]:
    """
    Renders one stage section. When output is streamed the title and trace
    lines have already been printed, so both can be left out.
    """
    lines = [format_title(stage)] if include_title else []
    if stage is Stage.TRACE:
        lines.extend(_trace_lines(result, verbose, include_trace_output))  # type: ignore[arg-type]
    else:
        lines.extend(_FORMATTERS[stage](result, verbose))
    lines.append(f"  Status: {result.status.value}")
    lines.append("")
    return lines


def format_report(report: DiagnosticReport) -> str:
    verbose = report.configuration.verbose
    lines = format_header(report.configuration)
    for stage, result in report.results.items():
        lines.extend(format_stage(stage, result, verbose))
    lines.extend(format_footer())
    return "\n".join(lines)


def report_to_json(report: DiagnosticReport, indent: int = 2) -> str:
    return json.dumps(report.to_dict(), indent=indent)
