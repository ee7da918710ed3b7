# hostprobe/configuration.py

"""
Configuration loader for hostprobe.

Settings come from DEFAULT_CONFIG, optionally overridden by a YAML file.
Command-line values are applied on top when the run configuration is built.
"""

import copy
from typing import Any, Dict, Iterable, Optional

import yaml

from .errors import ConfigurationError
from .models import DEFAULT_PORTS, DEFAULT_TIMEOUT_MS, ProbeConfiguration

# Default values for every tunable. A settings file only needs the keys it changes.
DEFAULT_CONFIG: Dict[str, Any] = {
    'timeout_ms': DEFAULT_TIMEOUT_MS,
    'ports': list(DEFAULT_PORTS),
    'web_ports': {'HTTP': 80, 'HTTPS': 443},
    'verify_tls': True,
    'max_scan_workers': 64,
    'trace_max_hops': 15,
    'trace_timeout_seconds': 30,
    'fallback_max_ttl': 10,
    'fallback_timeout_ms': 1000,
}

# Settings keys that map one-to-one onto ProbeConfiguration fields.
_CONFIG_FIELDS = tuple(DEFAULT_CONFIG)


def load_settings(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads settings from a YAML file merged over DEFAULT_CONFIG.

    With no path the defaults are returned. A missing, unreadable or invalid
    file raises ConfigurationError.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if path is None:
        return config

    try:
        with open(path, 'r') as f:
            user_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file '{path}' not found")
    except OSError as e:
        raise ConfigurationError(f"Could not read configuration file '{path}': {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing '{path}': {e}")

    if user_config is None:
        return config
    if not isinstance(user_config, dict):
        raise ConfigurationError(f"'{path}' must contain a mapping of settings")

    unknown = sorted(set(user_config) - set(DEFAULT_CONFIG))
    if unknown:
        raise ConfigurationError(f"Unknown setting(s) in '{path}': {', '.join(unknown)}")
    config.update(user_config)
    return config


def parse_port_list(value: str) -> list:
    """Parses a comma-separated string of ports into a list of integers."""
    try:
        ports = [int(p.strip()) for p in value.split(',') if p.strip()]
    except ValueError:
        raise ConfigurationError(f"Invalid port list '{value}'. Use comma-separated numbers (1-65535).")
    if not ports or not all(0 < port < 65536 for port in ports):
        raise ConfigurationError(f"Invalid port list '{value}'. Use comma-separated numbers (1-65535).")
    return ports


def build_configuration(
    target: Optional[str],
    settings: Optional[Dict[str, Any]] = None,
    *,
    timeout_ms: Optional[int] = None,
    verbose: bool = False,
    ports: Optional[Iterable[int]] = None,
    ping_only: bool = False,
    dns_check: bool = False,
    http_check: bool = False,
    traceroute: bool = False,
) -> ProbeConfiguration:
    """
    Combines loaded settings and explicit overrides into a validated
    ProbeConfiguration. An explicit port list also selects the port scan
    stage; settings-file ports only change which ports it covers.
    """
    merged = copy.deepcopy(settings if settings is not None else DEFAULT_CONFIG)
    if timeout_ms is not None:
        merged['timeout_ms'] = timeout_ms

    if ports is not None:
        merged['ports'] = list(ports)

    kwargs = {key: merged[key] for key in _CONFIG_FIELDS if key in merged}
    kwargs.setdefault('ports', DEFAULT_PORTS)
    return ProbeConfiguration.from_flags(
        target or "",
        ping_only=ping_only,
        dns_check=dns_check,
        http_check=http_check,
        traceroute=traceroute,
        port_scan=ports is not None,
        verbose=verbose,
        **kwargs,
    )
