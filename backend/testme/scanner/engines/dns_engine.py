# testme/scanner/engines/dns_engine.py
"""
DNS data collection engine.

Lookups through the pinned public resolvers. A name that does not exist or
has no records of the asked type returns an empty list; every other DNS
failure (timeouts, SERVFAIL from all nameservers) is raised as a probe error.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import dns.resolver

from testme.utils.resolvers import make_resolver, query_records, query_txt

logger = logging.getLogger(__name__)


class DnsClient:

    def __init__(self, nameservers: Optional[Sequence[str]] = None, timeout: float = 5):
        self.resolver = make_resolver(nameservers, timeout=timeout, lifetime=timeout * 2)

    def txt(self, name: str) -> List[str]:
        try:
            records = query_txt(self.resolver, name)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        return ["".join(parts) for parts in records]

    def lookup(self, name: str, rdtype: str) -> List[str]:
        try:
            return query_records(self.resolver, name, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
