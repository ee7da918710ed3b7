"""
Resolver adapter over the platform's DNS resolution.
"""
from __future__ import annotations
import logging
import socket
from typing import List, Optional, Tuple

from ..errors import ResolutionError
from ..models import AddressRecord
from .utils import family_name, resolve_socket_targets

logger = logging.getLogger(__name__)


class Resolver:
    """
    Wraps forward and reverse lookups.

    resolve() returns every address the resolver yields, not only the first,
    each paired with its reverse name when that differs from the literal.
    """

    def __init__(self, reverse_names: bool = True):
        self.reverse_names = reverse_names

    def resolve(self, name: str) -> Tuple[AddressRecord, ...]:
        try:
            targets = resolve_socket_targets(name)
        except (OSError, UnicodeError) as e:
            raise ResolutionError(name, str(e)) from e
        if not targets:
            raise ResolutionError(name, "no addresses returned")

        records: List[AddressRecord] = []
        for family, ip, _flowinfo, _scopeid in targets:
            canonical = None
            if self.reverse_names:
                try:
                    canonical = self.reverse_lookup(ip)
                except OSError as e:
                    logger.debug("Reverse lookup of %s failed: %s", ip, e)
            records.append(AddressRecord(address=ip, family=family_name(family), canonical_name=canonical))
        logger.debug("Resolved %s to %s", name, [r.address for r in records])
        return tuple(records)

    def first_address(self, name: str) -> str:
        """Resolves a name and returns the first address only."""
        return self.resolve_addresses(name)[0]

    def resolve_addresses(self, name: str) -> List[str]:
        """Forward lookup without reverse names."""
        try:
            targets = resolve_socket_targets(name)
        except (OSError, UnicodeError) as e:
            raise ResolutionError(name, str(e)) from e
        if not targets:
            raise ResolutionError(name, "no addresses returned")
        return [ip for _family, ip, _flowinfo, _scopeid in targets]

    @staticmethod
    def reverse_lookup(address: str) -> Optional[str]:
        """
        Returns the reverse name of an address, or None when it only maps
        back to itself. Raises OSError (socket.herror) when the lookup fails.
        """
        hostname, _aliases, _addrs = socket.gethostbyaddr(address.split('%')[0])
        if not hostname or hostname == address:
            return None
        return hostname
