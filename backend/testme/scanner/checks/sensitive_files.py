# testme/scanner/checks/sensitive_files.py
"""
Sensitive file exposure check.

Requests a curated list of paths that should never be public (VCS metadata,
environment files, private keys, database dumps, server status pages) and
confirms each hit by content, so a catch-all route answering 200 with the
SPA shell is not reported as an exposed .env file.

A 403 on VCS metadata still means the directory was deployed; it is
reported as medium.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from testme.scanner.base import PROBE_ERRORS, BaseCheck, FindingDraft, ScanContext

logger = logging.getLogger(__name__)

HTML_RE = re.compile(r"<!doctype\s+html|<html[\s>]", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Content confirmation
# ---------------------------------------------------------------------------

def _confirm_git_head(body: str) -> bool:
    return body.strip().startswith("ref:")

def _confirm_git_config(body: str) -> bool:
    return "[core]" in body or "[remote" in body

def _confirm_svn(body: str) -> bool:
    first = body.strip().split("\n", 1)[0].strip()
    return first.isdigit() or "svn:" in body

def _confirm_env(body: str) -> bool:
    lines = body.strip().split("\n")[:30]
    kv_count = sum(1 for l in lines if re.match(r"^[A-Z_][A-Z0-9_]*\s*=", l.strip()))
    return kv_count >= 2

def _confirm_private_key(body: str) -> bool:
    return bool(re.search(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----", body))

def _confirm_htpasswd(body: str) -> bool:
    lines = body.strip().split("\n")[:10]
    return any(re.match(r"^[^:\s]+:\$?[\w./$]{10,}", l) for l in lines)

def _confirm_sql_dump(body: str) -> bool:
    return any(s in body for s in ("CREATE TABLE", "INSERT INTO", "DROP TABLE"))

def _confirm_phpinfo(body: str) -> bool:
    return "phpinfo()" in body or "PHP Version" in body

def _confirm_server_status(body: str) -> bool:
    return "Apache Server Status" in body or "Server uptime" in body or "Apache Server Information" in body

def _confirm_wp_config(body: str) -> bool:
    return "DB_PASSWORD" in body or "DB_NAME" in body or "AUTH_KEY" in body

def _confirm_docker_compose(body: str) -> bool:
    return "services:" in body and ("image:" in body or "build:" in body)

def _confirm_web_config(body: str) -> bool:
    low = body.lower()
    return "<configuration" in low and ("<system.web" in low or "<appsettings" in low or "<connectionstrings" in low)

def _confirm_ds_store(body: str) -> bool:
    return "Bud1" in body

def _confirm_npmrc(body: str) -> bool:
    return "_authToken" in body or "registry=" in body

def _confirm_not_html(body: str) -> bool:
    return bool(body.strip()) and not HTML_RE.search(body[:2048])


SENSITIVE_PATHS: List[Dict[str, Any]] = [
    # -- Source Control --
    {"path": "/.git/HEAD", "kind": "source_control", "severity": "critical",
     "title": "Git repository exposed", "confirm": _confirm_git_head,
     "description": "The .git directory is accessible. The full source code and its history can be downloaded."},
    {"path": "/.git/config", "kind": "source_control", "severity": "critical",
     "title": "Git config exposed", "confirm": _confirm_git_config,
     "description": "The Git configuration is accessible and may reveal remote URLs with embedded credentials."},
    {"path": "/.svn/entries", "kind": "source_control", "severity": "high",
     "title": "SVN metadata exposed", "confirm": _confirm_svn,
     "description": "Subversion metadata is accessible and reveals file names and revisions."},

    # -- Environment / Secrets --
    {"path": "/.env", "kind": "secrets", "severity": "critical",
     "title": "Environment file exposed (.env)", "confirm": _confirm_env,
     "description": "The environment file with API keys, database passwords and other secrets is publicly accessible."},
    {"path": "/.env.local", "kind": "secrets", "severity": "critical",
     "title": "Local environment file exposed", "confirm": _confirm_env,
     "description": "A local environment override file is publicly accessible."},
    {"path": "/.env.production", "kind": "secrets", "severity": "critical",
     "title": "Production environment file exposed", "confirm": _confirm_env,
     "description": "The production environment file, likely with real credentials, is publicly accessible."},
    {"path": "/id_rsa", "kind": "secrets", "severity": "critical",
     "title": "SSH private key exposed", "confirm": _confirm_private_key,
     "description": "An SSH private key is publicly accessible and may grant server access."},
    {"path": "/.npmrc", "kind": "secrets", "severity": "high",
     "title": "npm config exposed (.npmrc)", "confirm": _confirm_npmrc,
     "description": "The npm configuration may contain auth tokens for private registries."},

    # -- Server / Application Configuration --
    {"path": "/.htpasswd", "kind": "config", "severity": "critical",
     "title": "Apache password file exposed", "confirm": _confirm_htpasswd,
     "description": "The htpasswd file with password hashes is publicly accessible."},
    {"path": "/.htaccess", "kind": "config", "severity": "low",
     "title": "Apache .htaccess exposed", "confirm": _confirm_not_html,
     "description": "The .htaccess file reveals rewrite rules and internal paths."},
    {"path": "/web.config", "kind": "config", "severity": "high",
     "title": "IIS web.config exposed", "confirm": _confirm_web_config,
     "description": "The IIS configuration may contain connection strings and keys."},
    {"path": "/wp-config.php.bak", "kind": "config", "severity": "critical",
     "title": "WordPress config backup exposed", "confirm": _confirm_wp_config,
     "description": "A backup of wp-config.php with database credentials is accessible."},
    {"path": "/docker-compose.yml", "kind": "config", "severity": "high",
     "title": "Docker Compose file exposed", "confirm": _confirm_docker_compose,
     "description": "The compose file reveals service layout, ports and possibly credentials."},
    {"path": "/config.json", "kind": "config", "severity": "medium",
     "title": "config.json exposed", "confirm": _confirm_not_html,
     "description": "A configuration file is publicly readable."},

    # -- Database Dumps --
    {"path": "/backup.sql", "kind": "data_leak", "severity": "critical",
     "title": "SQL backup exposed", "confirm": _confirm_sql_dump,
     "description": "A SQL database backup is publicly accessible."},
    {"path": "/dump.sql", "kind": "data_leak", "severity": "critical",
     "title": "SQL dump exposed", "confirm": _confirm_sql_dump,
     "description": "A SQL database dump is publicly accessible."},
    {"path": "/database.sql", "kind": "data_leak", "severity": "critical",
     "title": "SQL database file exposed", "confirm": _confirm_sql_dump,
     "description": "A SQL database file is publicly accessible."},

    # -- Debug / Status Endpoints --
    {"path": "/phpinfo.php", "kind": "info_leak", "severity": "medium",
     "title": "phpinfo() exposed", "confirm": _confirm_phpinfo,
     "description": "The PHP info page reveals server configuration, modules and environment variables."},
    {"path": "/server-status", "kind": "info_leak", "severity": "medium",
     "title": "Apache server-status exposed", "confirm": _confirm_server_status,
     "description": "The Apache status page reveals client IPs, requested URLs and server internals."},

    # -- Metadata --
    {"path": "/.DS_Store", "kind": "info_leak", "severity": "low",
     "title": ".DS_Store exposed", "confirm": _confirm_ds_store,
     "description": "macOS directory metadata reveals file and directory names."},
]


class SensitiveFilesCheck(BaseCheck):

    def __init__(self, paths: Optional[List[Dict[str, Any]]] = None):
        self.paths = paths if paths is not None else SENSITIVE_PATHS

    @property
    def name(self) -> str:
        return "Sensitive files"

    @property
    def category(self) -> str:
        return "sensitive_files"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        home = ctx.homepage()
        base = f"{home.scheme or 'https'}://{ctx.domain}"
        drafts: List[FindingDraft] = []
        total = len(self.paths)
        failures = 0

        for checked, path_def in enumerate(self.paths):
            if ctx.budget_exhausted(self.probe_reserve_seconds):
                drafts.append(self.budget_exhausted_finding(ctx, checked, total))
                break

            url = base + path_def["path"]
            try:
                resp = ctx.http.get(url, allow_redirects=False)
            except PROBE_ERRORS as e:
                failures += 1
                logger.debug(f"Sensitive path probe failed: {url}: {e}")
                continue

            draft = self._evaluate(path_def, url, resp.status, resp.body)
            if draft:
                drafts.append(draft)

        if failures and failures == total:
            drafts.append(FindingDraft(
                template_id="sensitive_files-probe-failed",
                title="Sensitive files could not be assessed",
                severity="info",
                description=f"All {total} path probes against {base} failed.",
                recommendation="Make sure the site is reachable from the internet and re-run the scan.",
            ))

        return drafts

    def _evaluate(self, path_def: Dict[str, Any], url: str, status: int, body: str) -> Optional[FindingDraft]:
        if status == 403 and path_def["kind"] == "source_control":
            return FindingDraft(
                template_id="vcs-path-forbidden",
                title=f"{path_def['title']} (access blocked)",
                severity="medium",
                description=(
                    f"{path_def['path']} returned 403 Forbidden: the metadata was deployed "
                    f"but access is blocked. Other files inside it may still be reachable."
                ),
                recommendation="Remove VCS directories from the web root instead of only blocking them.",
                affected_url=url,
                cwe="CWE-527",
                details={"status": status},
            )

        if status != 200:
            return None

        confirm: Callable[[str], bool] = path_def["confirm"]
        if not confirm(body or ""):
            return None

        return FindingDraft(
            template_id=f"exposed-file-{path_def['kind']}",
            title=path_def["title"],
            severity=path_def["severity"],
            description=path_def["description"],
            recommendation=(
                f"Remove {path_def['path']} from the public web root or deny access in the "
                f"server configuration, and rotate any credentials it contained."
            ),
            affected_url=url,
            cwe="CWE-538",
            details={"path": path_def["path"], "status": status, "kind": path_def["kind"]},
        )
