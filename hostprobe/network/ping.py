"""
Network-layer reachability checks.

An ICMP echo is sent over a raw socket when the process is allowed to open
one; otherwise the platform's ping command is used instead.
"""
import logging
import math
import platform
import random
import re
import select
import socket
import struct
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

ICMP_ECHO_REQUEST = 8
ICMP_ECHO_REPLY = 0
ICMPV6_ECHO_REQUEST = 128
ICMPV6_ECHO_REPLY = 129

_LATENCY_RE = re.compile(r"time[=<]\s*([\d.]+)\s*ms", re.IGNORECASE)


@dataclass
class ICMPPacket:
    type: int
    code: int
    checksum: int
    identifier: int
    sequence: int
    payload: bytes

    def pack(self) -> bytes:
        header = struct.pack('!BBHHH', self.type, self.code, 0, self.identifier, self.sequence)
        checksum = self._calculate_checksum(header + self.payload)
        header = struct.pack('!BBHHH', self.type, self.code, checksum, self.identifier, self.sequence)
        return header + self.payload

    @staticmethod
    def _calculate_checksum(data: bytes) -> int:
        if len(data) % 2:
            data += b'\x00'
        res = sum(struct.unpack('!%dH' % (len(data) // 2), data))
        res = (res >> 16) + (res & 0xffff)
        res += res >> 16
        return ~res & 0xffff


def parse_latency(output: str) -> Optional[float]:
    """Pulls the round-trip time of the first reply out of ping output."""
    match = _LATENCY_RE.search(output)
    if match:
        try:
            return float(match.group(1))
        except ValueError:
            return None
    return None


class Pinger:
    """Handles reachability checks with a per-check timeout in milliseconds."""

    def __init__(self, timeout_ms: int = 1000):
        self.timeout_ms = timeout_ms
        self.identifier = random.randint(0, 0xffff)
        self.sequence = random.randint(0, 0xffff)
        self._raw_allowed = True

    def is_reachable(self, host: str, ttl: Optional[int] = None,
                     timeout_ms: Optional[int] = None) -> Tuple[bool, Optional[float]]:
        """
        Returns (reachable, latency_ms). Never raises for network conditions;
        latency is None when the host did not answer. timeout_ms overrides
        the pinger's own timeout for this check.
        """
        timeout_ms = timeout_ms or self.timeout_ms
        if self._raw_allowed:
            try:
                return self._icmp_ping(host, ttl, timeout_ms)
            except PermissionError:
                logger.debug("Raw ICMP socket not permitted, using the system ping command")
                self._raw_allowed = False
        return self._system_ping(host, ttl, timeout_ms)

    def _icmp_ping(self, host: str, ttl: Optional[int], timeout_ms: int) -> Tuple[bool, Optional[float]]:
        """Send an ICMP echo request and wait for the matching reply."""
        is_ipv6 = ':' in host
        family = socket.AF_INET6 if is_ipv6 else socket.AF_INET
        proto = socket.IPPROTO_ICMPV6 if is_ipv6 else socket.IPPROTO_ICMP
        timeout = timeout_ms / 1000.0
        self.sequence = (self.sequence + 1) & 0xffff

        # PermissionError from here is left to the caller.
        sock = socket.socket(family, socket.SOCK_RAW, proto)
        with sock:
            try:
                if ttl:
                    if is_ipv6:
                        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS, ttl)
                    else:
                        sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, ttl)
                packet = ICMPPacket(
                    type=ICMPV6_ECHO_REQUEST if is_ipv6 else ICMP_ECHO_REQUEST,
                    code=0,
                    checksum=0,
                    identifier=self.identifier,
                    sequence=self.sequence,
                    payload=struct.pack('d', time.time())
                )
                dest_addr = host.split('%')[0]
                start = time.monotonic()
                deadline = start + timeout
                sock.sendto(packet.pack(), (dest_addr, 0))

                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False, None
                    ready, _, _ = select.select([sock], [], [], remaining)
                    if not ready:
                        return False, None
                    data, _addr = sock.recvfrom(1024)
                    if self._is_echo_reply(data, is_ipv6):
                        return True, round((time.monotonic() - start) * 1000, 1)
            except OSError as e:
                logger.debug("ICMP echo to %s failed: %s", host, e)
                return False, None

    def _is_echo_reply(self, data: bytes, is_ipv6: bool) -> bool:
        if not data:
            return False
        # IPv4 raw sockets deliver the IP header too; IPv6 ones do not.
        offset = 0 if is_ipv6 else (data[0] & 0x0f) * 4
        icmp = data[offset:offset + 8]
        if len(icmp) < 8:
            return False
        icmp_type, _code, _checksum, identifier, sequence = struct.unpack('!BBHHH', icmp)
        expected = ICMPV6_ECHO_REPLY if is_ipv6 else ICMP_ECHO_REPLY
        return icmp_type == expected and identifier == self.identifier and sequence == self.sequence

    def build_command(self, host: str, ttl: Optional[int] = None, system: Optional[str] = None,
                      timeout_ms: Optional[int] = None) -> List[str]:
        """Builds a single-echo ping command for the current platform."""
        system = (system or platform.system()).lower()
        timeout_ms = timeout_ms or self.timeout_ms
        is_ipv6 = ':' in host
        command: List[str] = ['ping']
        if system == 'windows':
            if is_ipv6:
                command.append('-6')
            # -n 1 (count), -w (timeout ms), -i (TTL)
            command.extend(['-n', '1', '-w', str(timeout_ms)])
            if ttl:
                command.extend(['-i', str(ttl)])
        elif system == 'darwin':
            if is_ipv6:
                command = ['ping6', '-c', '1']
                if ttl:
                    command.extend(['-h', str(ttl)])
            else:
                # -W is in milliseconds on macOS, -m sets the TTL
                command.extend(['-n', '-c', '1', '-W', str(timeout_ms)])
                if ttl:
                    command.extend(['-m', str(ttl)])
        else:
            if is_ipv6:
                command.append('-6')
            # -n: no DNS lookups, -c 1: count, -W: timeout (whole seconds), -t: TTL
            command.extend(['-n', '-c', '1', '-W', str(max(1, math.ceil(timeout_ms / 1000)))])
            if ttl:
                command.extend(['-t', str(ttl)])
        command.append(host)
        return command

    def _system_ping(self, host: str, ttl: Optional[int], timeout_ms: int) -> Tuple[bool, Optional[float]]:
        is_windows = platform.system().lower() == 'windows'
        command = self.build_command(host, ttl, timeout_ms=timeout_ms)
        start = time.monotonic()
        try:
            completed = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                # Linux rounds -W up to whole seconds; the process is cut off shortly after our own timeout.
                timeout=timeout_ms / 1000.0 + 0.5,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0) if is_windows else 0
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("System ping of %s failed: %s", host, e)
            return False, None

        elapsed = round((time.monotonic() - start) * 1000, 1)
        output = completed.stdout or ""
        latency = parse_latency(output)
        if completed.returncode != 0 or (is_windows and not _windows_reply_seen(host, output, latency)):
            return False, None
        return True, latency if latency is not None else elapsed


def _windows_reply_seen(host: str, output: str, latency: Optional[float]) -> bool:
    """
    Windows ping exits 0 on "Destination host unreachable". An IPv4 reply
    carries TTL=; an IPv6 reply has no TTL field, only the round-trip time.
    """
    if ':' in host:
        return latency is not None
    return "TTL=" in output.upper()
