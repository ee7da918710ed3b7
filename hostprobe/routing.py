"""
Describes the local end of the route to a target: which source address the
kernel picks, which interface owns it, and the default gateway.
Everything here is best effort; failures leave fields empty.
"""
import ipaddress
import logging
import platform
import re
import socket
import subprocess
from typing import List, Optional

import psutil

from .models import RouteInfo


def _source_address_for(address: str) -> Optional[str]:
    """Asks the kernel which local address it would use to reach `address`."""
    family = socket.AF_INET6 if ':' in address else socket.AF_INET
    try:
        with socket.socket(family, socket.SOCK_DGRAM) as s:
            # Nothing is sent; connecting a UDP socket only picks a route.
            s.connect((address.split('%')[0], 9))
            return s.getsockname()[0]
    except OSError:
        return None


def _interface_for_address(local_address: str) -> Optional[str]:
    """Finds the interface that carries a given local address."""
    try:
        wanted = ipaddress.ip_address(local_address.split('%')[0])
        for iface, addrs in psutil.net_if_addrs().items():
            for addr in addrs:
                if addr.family not in (socket.AF_INET, socket.AF_INET6):
                    continue
                try:
                    if ipaddress.ip_address(addr.address.split('%')[0]) == wanted:
                        return iface
                except ValueError:
                    continue
    except (ValueError, OSError) as e:
        logging.debug(f"Interface lookup for {local_address} failed: {e}")
    return None


def _gateways_from_system_command() -> List[str]:
    """Parses the system routing table for default gateways."""
    gateways: List[str] = []
    system = platform.system()
    creationflags = getattr(subprocess, "CREATE_NO_WINDOW", 0) if system == "Windows" else 0
    try:
        if system == "Windows":
            result = subprocess.run(["route", "print", "-4"], capture_output=True, text=True,
                                    check=True, timeout=5, creationflags=creationflags)
            for line in result.stdout.splitlines():
                if line.strip().startswith("0.0.0.0"):
                    parts = line.split()
                    if len(parts) >= 3:
                        gateways.append(parts[2])
        elif system == "Darwin":
            result = subprocess.run(["route", "-n", "get", "default"], capture_output=True, text=True,
                                    check=True, timeout=5)
            m = re.search(r"gateway:\s+(\S+)", result.stdout)
            if m:
                gateways.append(m.group(1))
        else:
            result = subprocess.run(["ip", "route", "show", "default"], capture_output=True, text=True,
                                    check=True, timeout=5)
            for line in result.stdout.splitlines():
                m = re.search(r"default via (\S+)", line)
                if m:
                    gateways.append(m.group(1))
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
        logging.debug(f"Failed to read default gateway from system command: {e}")
    return gateways


def get_default_gateway() -> Optional[str]:
    """Returns the first default gateway from the routing table, if any."""
    gateways = _gateways_from_system_command()
    logging.debug(f"Found potential gateways: {gateways}")
    return gateways[0] if gateways else None


def describe_route(address: str) -> RouteInfo:
    """Collects the local route context for reaching `address`."""
    source = _source_address_for(address)
    interface = _interface_for_address(source) if source else None
    gateway = None
    try:
        is_loopback = ipaddress.ip_address(address.split('%')[0]).is_loopback
    except ValueError:
        is_loopback = False
    if not is_loopback:
        gateway = get_default_gateway()
    return RouteInfo(source_address=source, interface=interface, gateway=gateway)
