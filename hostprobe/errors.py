"""
Error taxonomy for hostprobe.

Only ConfigurationError is allowed to reach the caller of a diagnostic run.
Everything else is raised inside a stage and converted into that stage's
failure result at the stage boundary.
"""


class HostProbeError(Exception):
    """Base class for all hostprobe errors."""


class ConfigurationError(HostProbeError, ValueError):
    """Missing or invalid run configuration. Fatal before any stage runs."""


class ResolutionError(HostProbeError):
    """A name could not be resolved to any address."""

    def __init__(self, name: str, reason: str = ""):
        self.name = name
        self.reason = reason
        message = f"Could not resolve '{name}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConnectivityFailure(HostProbeError):
    """Every reachability attempt, including the TCP fallback, failed."""


class TransportFailure(HostProbeError):
    """A socket or HTTP level failure of a single probe."""


class ProcessFailure(HostProbeError):
    """The trace executable could not be launched or did not finish cleanly."""

    def __init__(self, message: str, return_code=None):
        self.return_code = return_code
        super().__init__(message)
