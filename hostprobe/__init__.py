"""
hostprobe: concurrent host diagnostics.

Reachability, DNS, open TCP services, web endpoints and path tracing for a
single target, collected into one DiagnosticReport.
"""
from .configuration import build_configuration, load_settings
from .errors import (
    ConfigurationError,
    ConnectivityFailure,
    HostProbeError,
    ProcessFailure,
    ResolutionError,
    TransportFailure,
)
from .models import DiagnosticReport, ProbeConfiguration, Stage, StageStatus
from .pipeline import DiagnosticPipeline

__version__ = "1.0.0"

__all__ = [
    "build_configuration",
    "load_settings",
    "ConfigurationError",
    "ConnectivityFailure",
    "HostProbeError",
    "ProcessFailure",
    "ResolutionError",
    "TransportFailure",
    "DiagnosticReport",
    "ProbeConfiguration",
    "Stage",
    "StageStatus",
    "DiagnosticPipeline",
]
