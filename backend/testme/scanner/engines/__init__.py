# testme/scanner/engines/__init__.py
"""
Probe engines.
Each engine talks to the target over one protocol and returns raw facts.
Engines do NOT classify severity; the checks do.
"""
from testme.scanner.engines.http_engine import HttpClient, ProbeResponse, parse_set_cookie
from testme.scanner.engines.ssl_engine import TlsInspector
from testme.scanner.engines.dns_engine import DnsClient

__all__ = ["HttpClient", "ProbeResponse", "parse_set_cookie", "TlsInspector", "DnsClient"]
