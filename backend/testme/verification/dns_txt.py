# testme/verification/dns_txt.py
"""
DNS TXT ownership verification.

Queries TXT records for the bare domain through fixed public resolvers
(never the host's configured resolver) and succeeds iff one record's
concatenated character-strings equal the token exactly.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import dns.exception
import dns.resolver

from testme.utils.resolvers import make_resolver, query_txt
from testme.verification.base import BaseVerifier, VerificationResult

logger = logging.getLogger(__name__)


class DnsTxtVerifier(BaseVerifier):

    def __init__(self, timeout: float = 10, nameservers: Optional[Sequence[str]] = None):
        super().__init__(timeout=timeout)
        self.nameservers = list(nameservers) if nameservers else None

    @property
    def name(self) -> str:
        return "dns_txt"

    def instructions(self, domain: str, token: str) -> Dict[str, str]:
        return {
            "recordType": "TXT",
            "host": domain,
            "value": token,
            "hint": "Add a TXT record on the domain itself. Propagation can take a few minutes.",
        }

    def _fetch_txt_records(self, domain: str) -> List[List[str]]:
        resolver = make_resolver(self.nameservers, timeout=self.timeout / 2, lifetime=self.timeout)
        return query_txt(resolver, domain)

    def attempt(self, domain: str, token: str) -> VerificationResult:
        try:
            records = self._fetch_txt_records(domain)
        except dns.resolver.NXDOMAIN:
            return VerificationResult.failed(
                self.name, f"The domain {domain} does not exist in public DNS (NXDOMAIN).",
            )
        except dns.resolver.NoAnswer:
            return VerificationResult.failed(
                self.name, f"No TXT records found for {domain}. Add a TXT record with the verification token.",
            )
        except dns.resolver.NoNameservers:
            return VerificationResult.failed(
                self.name, f"No nameserver answered for {domain}. Check the domain's DNS delegation.",
            )
        except dns.exception.Timeout:
            return VerificationResult.failed(
                self.name, "DNS lookup timed out. Try again in a few minutes.",
            )
        except dns.exception.DNSException as e:
            return VerificationResult.failed(self.name, f"DNS lookup failed: {e}")

        values = ["".join(parts) for parts in records]
        if any(v == token for v in values):
            return VerificationResult.ok(self.name, records=values)

        return VerificationResult.failed(
            self.name,
            f"Found {len(values)} TXT record(s) for {domain}, but none matches the "
            f"verification token. DNS changes may still be propagating.",
            records=values[:20],
        )
