"""
HTTP/HTTPS endpoint checks.

A single GET per endpoint, redirects are reported rather than followed and
the response body is never read.
"""
from __future__ import annotations
import logging
import time
from typing import Dict, Mapping, Optional

import requests

from ..errors import TransportFailure
from ..models import StageStatus, WebCheck, WebResult
from .utils import format_host_for_url

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}
USER_AGENT = "hostprobe/1.0"


def build_url(host: str, port: int, use_tls: bool) -> str:
    """Builds the probe URL, leaving the port out when it is the scheme default."""
    scheme = "https" if use_tls else "http"
    host_for_url = format_host_for_url(host)
    if port == DEFAULT_PORTS[scheme]:
        return f"{scheme}://{host_for_url}"
    return f"{scheme}://{host_for_url}:{port}"


class WebProbe:
    """Issues one request per endpoint with separate connect and read timeouts."""

    def __init__(self, timeout_ms: int = 3000, verbose: bool = False, verify_tls: bool = True,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout_ms / 1000.0
        self.verbose = verbose
        self.verify_tls = verify_tls
        self._session = session

    def check(self, host: str, port: int, use_tls: bool) -> WebCheck:
        protocol = "HTTPS" if use_tls else "HTTP"
        url = build_url(host, port, use_tls)
        try:
            return self._request(protocol, url, port)
        except TransportFailure as e:
            logger.debug("%s check of %s failed: %s", protocol, url, e)
            return WebCheck(
                protocol=protocol,
                url=url,
                port=port,
                error=str(e) if self.verbose else None,
            )

    def check_all(self, host: str, web_ports: Mapping[str, int]) -> WebResult:
        """Checks HTTP then HTTPS on the configured ports."""
        checks: Dict[str, WebCheck] = {}
        for protocol in ("HTTP", "HTTPS"):
            if protocol in web_ports:
                checks[protocol] = self.check(host, web_ports[protocol], use_tls=protocol == "HTTPS")

        answered = sum(1 for c in checks.values() if c.available)
        if checks and answered == len(checks):
            status = StageStatus.SUCCESS
        elif answered:
            status = StageStatus.PARTIAL
        else:
            status = StageStatus.FAILURE
        return WebResult(status=status, per_protocol=checks)

    def _request(self, protocol: str, url: str, port: int) -> WebCheck:
        session = self._session
        if session is None:
            session = requests.Session()
            # Probe the host directly, never through an environment proxy.
            session.trust_env = False
        start = time.monotonic()
        try:
            with session.get(
                url,
                timeout=(self.timeout, self.timeout),
                allow_redirects=False,
                stream=True,
                verify=self.verify_tls,
                headers={"User-Agent": USER_AGENT},
            ) as response:
                elapsed_ms = round((time.monotonic() - start) * 1000, 1)
                return WebCheck(
                    protocol=protocol,
                    url=url,
                    port=port,
                    status_code=response.status_code,
                    elapsed_ms=elapsed_ms,
                    server=response.headers.get("Server"),
                    content_type=response.headers.get("Content-Type"),
                    location=response.headers.get("Location"),
                )
        except requests.RequestException as e:
            raise TransportFailure(str(e)) from e
        finally:
            if self._session is None:
                session.close()
