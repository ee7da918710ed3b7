"""
Core network utility functions: IP literal handling and the TCP socket probe.
"""
import ipaddress
import logging
import socket
import time
from typing import List, Optional, Tuple, cast

logger = logging.getLogger(__name__)

# (family, ip, flowinfo, scopeid)
SocketTarget = Tuple[int, str, int, int]


def is_ip_literal(host: str) -> Tuple[bool, Optional[int]]:
    """Checks if a string is a valid IP literal and returns its family."""
    try:
        socket.inet_pton(socket.AF_INET, host)
        return True, socket.AF_INET
    except OSError:
        pass
    try:
        socket.inet_pton(socket.AF_INET6, host.split('%')[0])
        return True, socket.AF_INET6
    except OSError:
        return False, None


def family_name(family: int) -> str:
    return "IPv6" if family == socket.AF_INET6 else "IPv4"


def resolve_socket_targets(host: str) -> List[SocketTarget]:
    """
    Resolves a host to connectable addresses, de-duplicated in resolver order.

    IP literals are returned as-is without touching the resolver. Raises
    socket.gaierror when the name cannot be resolved.
    """
    is_ip, family = is_ip_literal(host)
    if is_ip:
        if family == socket.AF_INET:
            return [(socket.AF_INET, host, 0, 0)]
        ip_only, _, scope = host.partition('%')
        scopeid = 0
        if scope:
            try:
                scopeid = int(scope) if scope.isdigit() else socket.if_nametoindex(scope)
            except OSError:
                scopeid = 0
        return [(socket.AF_INET6, ip_only, 0, scopeid)]

    results: List[SocketTarget] = []
    for family, _socktype, _proto, _canonname, sockaddr in socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP):
        if family == socket.AF_INET:
            results.append((family, cast(str, sockaddr[0]), 0, 0))
        elif family == socket.AF_INET6 and len(sockaddr) == 4:
            results.append((family, cast(str, sockaddr[0]), cast(int, sockaddr[2]), cast(int, sockaddr[3])))

    seen = set()
    deduped: List[SocketTarget] = []
    for rec in results:
        key = (rec[0], rec[1], rec[3])
        if key not in seen:
            seen.add(key)
            deduped.append(rec)
    return deduped


def connect_time_ms(host: str, port: int, timeout_ms: int) -> Optional[float]:
    """
    Attempts a TCP connection and returns the time it took in milliseconds,
    or None if no address accepted the connection.

    All candidate addresses share one deadline, so the call never takes much
    longer than timeout_ms. Sockets are closed on every path.
    """
    deadline = time.monotonic() + timeout_ms / 1000.0
    try:
        addrs = resolve_socket_targets(host)
    except (OSError, UnicodeError) as e:
        logger.debug("Socket probe could not resolve %s: %s", host, e)
        return None

    for family, ip, flowinfo, scopeid in addrs:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            with socket.socket(family, socket.SOCK_STREAM) as sock:
                sock.settimeout(remaining)
                sockaddr = (ip, port) if family == socket.AF_INET else (ip, port, flowinfo, scopeid)
                start = time.monotonic()
                if sock.connect_ex(sockaddr) == 0:
                    return round((time.monotonic() - start) * 1000, 1)
        except (socket.timeout, OSError) as e:
            logger.debug("Connect to %s port %d failed: %s", ip, port, e)
            continue
    return None


def try_connect(host: str, port: int, timeout_ms: int) -> bool:
    """True if a TCP connection to host:port succeeds within timeout_ms."""
    return connect_time_ms(host, port, timeout_ms) is not None


def format_host_for_url(host: str) -> str:
    """Wrap IPv6 literal hosts in brackets for URL building."""
    try:
        ip_obj = ipaddress.ip_address(host.split('%')[0])
        if ip_obj.version == 6:
            return f"[{host}]"
    except ValueError:
        pass
    return host
