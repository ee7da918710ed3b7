"""
Well-known TCP port to service label mapping.

The table is a read-only mapping shared by every scan thread.
"""
from types import MappingProxyType
from typing import Mapping

UNKNOWN_SERVICE = "Unknown"

SERVICE_CATALOG: Mapping[int, str] = MappingProxyType({
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    465: "SMTP-SSL",
    587: "SMTP-TLS",
    993: "IMAPS",
    995: "POP3S",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    5900: "VNC",
    8080: "HTTP-Alt",
    8443: "HTTPS-Alt",
})


def service_label(port: int) -> str:
    """Returns the service label for a port, or "Unknown"."""
    return SERVICE_CATALOG.get(port, UNKNOWN_SERVICE)
