"""
Command-line front end for a single-host diagnostic run.

Builds the run configuration from arguments and an optional settings file,
runs the pipeline and prints each stage as it finishes.
"""
import argparse
import logging
import sys
from typing import List, Optional

from .configuration import build_configuration, load_settings, parse_port_list
from .errors import ConfigurationError
from .models import DiagnosticReport, PortResult, Stage, StageResult
from .pipeline import DiagnosticPipeline
from .report import format_footer, format_header, format_stage, format_title, report_to_json

EXAMPLES = """\
Examples:
  probe -h google.com
  probe -h 8.8.8.8 --ping-only
  probe -h github.com --http-check
  probe -h example.org -p 22,80,443 --traceroute
"""


class UsageError(Exception):
    """Raised by the parser instead of exiting, so main() controls the output."""


class ProbeArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def build_parser() -> ProbeArgumentParser:
    # -h is the host, so argparse's own -h/--help is replaced by --help alone.
    parser = ProbeArgumentParser(
        prog="probe",
        description="Diagnose a host: reachability, DNS, open ports, web services and route.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument("-h", "--host", metavar="<address>", help="Target host (required)")
    parser.add_argument("-t", "--timeout", metavar="<ms>", type=int,
                        help="Connection timeout in milliseconds (default: 3000)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-p", "--ports", metavar="<port1,port2>",
                        help="Specific ports to test (default: common ports)")
    parser.add_argument("--ping-only", action="store_true", help="Only perform ping test")
    parser.add_argument("--http-check", action="store_true", help="Perform HTTP/HTTPS checks")
    parser.add_argument("--dns-check", action="store_true", help="Perform DNS resolution checks")
    parser.add_argument("--traceroute", action="store_true", help="Perform traceroute")
    parser.add_argument("-c", "--config", metavar="<file>", help="YAML settings file")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--help", action="store_true", help="Show this help message and exit")
    return parser


def _usage_error(parser: argparse.ArgumentParser, message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    parser.print_help()
    return 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _emit(lines: List[str]) -> None:
    for line in lines:
        print(line, flush=True)


def run_streaming(pipeline: DiagnosticPipeline, config) -> DiagnosticReport:
    """Runs the pipeline, printing sections and trace lines as they arrive."""
    _emit(format_header(config))

    def on_stage_start(stage: Stage) -> None:
        _emit([format_title(stage)])

    def on_stage(stage: Stage, result: StageResult) -> None:
        _emit(format_stage(stage, result, config.verbose, include_title=False, include_trace_output=False))

    def on_trace_line(line: str) -> None:
        _emit([f"  {line}"])

    def on_port(result: PortResult) -> None:
        logging.debug(f"Port {result.port} ({result.service_label}): {result.state.value}")

    report = pipeline.run(
        config,
        on_stage=on_stage,
        on_trace_line=on_trace_line,
        on_port=on_port,
        on_stage_start=on_stage_start,
    )
    _emit(format_footer())
    return report


def main(argv: Optional[List[str]] = None) -> int:
    """Parses arguments, runs the diagnostics and returns the exit code."""
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help()
        return 0

    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        return _usage_error(parser, str(e))
    if args.help:
        parser.print_help()
        return 0
    if not args.host:
        return _usage_error(parser, "Target host is required")

    _configure_logging(args.verbose)
    try:
        settings = load_settings(args.config)
        ports = parse_port_list(args.ports) if args.ports is not None else None
        config = build_configuration(
            args.host,
            settings,
            timeout_ms=args.timeout,
            verbose=args.verbose,
            ports=ports,
            ping_only=args.ping_only,
            dns_check=args.dns_check,
            http_check=args.http_check,
            traceroute=args.traceroute,
        )
    except ConfigurationError as e:
        return _usage_error(parser, str(e))

    pipeline = DiagnosticPipeline()
    if args.json:
        report = pipeline.run(config)
        print(report_to_json(report))
    else:
        run_streaming(pipeline, config)
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
