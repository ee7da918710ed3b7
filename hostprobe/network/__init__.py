"""
Probe primitives used by the diagnostic pipeline.
"""

from .ping import Pinger
from .resolver import Resolver
from .scanner import PortScanCoordinator
from .trace import PathTracer, build_trace_command
from .utils import try_connect, connect_time_ms
from .web import WebProbe, build_url

__all__ = [
    "Pinger",
    "Resolver",
    "PortScanCoordinator",
    "PathTracer",
    "build_trace_command",
    "try_connect",
    "connect_time_ms",
    "WebProbe",
    "build_url",
]
