# testme/utils/resolvers.py
from __future__ import annotations

from typing import List, Optional, Sequence

import dns.resolver

DEFAULT_RESOLVERS = ["8.8.8.8", "1.1.1.1"]

RESOLVER_TIMEOUT = 5
RESOLVER_LIFETIME = 10


def make_resolver(
    nameservers: Optional[Sequence[str]] = None,
    timeout: float = RESOLVER_TIMEOUT,
    lifetime: float = RESOLVER_LIFETIME,
) -> dns.resolver.Resolver:
    """
    Resolver pinned to public nameservers.

    configure=False skips /etc/resolv.conf so a local (possibly poisoned or
    split-horizon) resolver never answers ownership or scan queries.
    """
    r = dns.resolver.Resolver(configure=False)
    r.nameservers = list(nameservers or DEFAULT_RESOLVERS)
    r.timeout = timeout
    r.lifetime = lifetime
    return r


def query_txt(resolver: dns.resolver.Resolver, name: str) -> List[List[str]]:
    """
    Return TXT records as lists of character-strings, one list per record.

    Raises dns.exception.DNSException subclasses (NXDOMAIN, NoAnswer,
    Timeout, ...) unchanged; callers decide what a failure means.
    """
    answers = resolver.resolve(name, "TXT")
    records: List[List[str]] = []
    for rdata in answers:
        records.append([s.decode("utf-8", errors="replace") for s in rdata.strings])
    return records


def query_records(resolver: dns.resolver.Resolver, name: str, rdtype: str) -> List[str]:
    """Presentation-format rdata for any record type (NS, CAA, DNSKEY, ...)."""
    answers = resolver.resolve(name, rdtype)
    return [rdata.to_text() for rdata in answers]
