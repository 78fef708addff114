# testme/scanner/__init__.py
"""
TestMe scan engine.

Usage:
    from testme.scanner import ScanOrchestrator

    orchestrator = ScanOrchestrator(executor=StepExecutor.from_config(app.config))
    scan = orchestrator.create_scan(owner_id, domain_id, consent=True)
    result = orchestrator.execute_step(owner_id, scan.id)

Architecture:
    ScanOrchestrator (state machine, admission, cancel, summary)
    ├── ScanQueue        background draining, one step per scan per tick
    └── StepExecutor     runs one catalog step, compare-and-advance cursor
        ├── Engines (collect raw data)
        │   ├── HttpClient     GET probes, headers, Set-Cookie, bodies
        │   ├── TlsInspector   handshake, certificate, protocol versions
        │   └── DnsClient      TXT, NS, CAA, DNSKEY lookups through public resolvers
        ├── crawl_site         bounded same-site crawl shared by page-level checks
        │
        └── Checks (interpret data → produce findings), one per category
            transport, headers, cookies, information_disclosure,
            sensitive_files, forms, cors, email, js_libraries
"""

from testme.scanner.catalog import SCAN_STEPS, CheckStep
from testme.scanner.executor import StepExecutor, StepResult
from testme.scanner.orchestrator import ScanOrchestrator
from testme.scanner.queue import ScanQueue

__all__ = [
    "SCAN_STEPS", "CheckStep",
    "StepExecutor", "StepResult",
    "ScanOrchestrator", "ScanQueue",
]
