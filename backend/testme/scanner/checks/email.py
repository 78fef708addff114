# testme/scanner/checks/email.py
"""
Email and DNS security check.

TXT lookups through the pinned public resolvers: the domain itself for SPF
and _dmarc.<domain> for DMARC. A website without mail still benefits from
"v=spf1 -all" and a reject policy, since spoofed mail can claim any domain.

The zone side: nameserver redundancy and DNSSEC (DNSKEY) at the closest
enclosing zone apex, and the CAA record set that applies to the domain.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from testme.scanner.base import PROBE_ERRORS, BaseCheck, FindingDraft, ScanContext

logger = logging.getLogger(__name__)


def spf_all_qualifier(record: str) -> Optional[str]:
    """'+', '-', '~', '?' for the record's all mechanism, None without one."""
    for part in record.split()[1:]:
        qualifier = "+"
        mechanism = part
        if part[0] in "+-~?":
            qualifier, mechanism = part[0], part[1:]
        if mechanism.lower() == "all":
            return qualifier
    return None


def parse_dmarc(record: str) -> Dict[str, str]:
    tags: Dict[str, str] = {}
    for part in record.split(";"):
        if "=" in part:
            key, val = part.split("=", 1)
            tags[key.strip().lower()] = val.strip()
    return tags


def caa_tag(record: str) -> str:
    """Tag of a presentation-format CAA record: 0 issue "ca.example" -> issue."""
    parts = record.split()
    return parts[1].lower() if len(parts) > 1 else ""


def parent_names(domain: str) -> List[str]:
    """example.co.uk -> [example.co.uk, co.uk]; the TLD itself is never asked."""
    labels = domain.rstrip(".").split(".")
    return [".".join(labels[i:]) for i in range(len(labels) - 1)]


def find_zone_apex(resolver, domain: str) -> Tuple[Optional[str], List[str]]:
    """Closest enclosing name with NS records, and those nameservers."""
    for name in parent_names(domain):
        nameservers = resolver.lookup(name, "NS")
        if nameservers:
            return name, sorted(ns.rstrip(".").lower() for ns in nameservers)
    return None, []


def find_caa(resolver, domain: str, apex: Optional[str] = None) -> List[str]:
    """
    Relevant CAA record set: the first non-empty set walking from the name
    towards the root (RFC 8659), stopping at the zone apex when known.
    """
    for name in parent_names(domain):
        records = resolver.lookup(name, "CAA")
        if records:
            return records
        if name == apex:
            break
    return []


class EmailCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Email and DNS security"

    @property
    def category(self) -> str:
        return "email"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        drafts: List[FindingDraft] = []
        domain = ctx.domain

        try:
            drafts.extend(self._check_spf(domain, ctx.dns.txt(domain)))
        except PROBE_ERRORS as e:
            drafts.append(self.probe_failed(ctx, e, f"TXT {domain}"))

        try:
            drafts.extend(self._check_dmarc(domain, ctx.dns.txt(f"_dmarc.{domain}")))
        except PROBE_ERRORS as e:
            drafts.append(self.probe_failed(ctx, e, f"TXT _dmarc.{domain}"))

        try:
            apex, nameservers = find_zone_apex(ctx.dns, domain)
        except PROBE_ERRORS as e:
            drafts.append(self.probe_failed(ctx, e, f"NS {domain}"))
            apex, nameservers = None, []

        if apex:
            drafts.extend(self._check_nameservers(apex, nameservers))
            try:
                drafts.extend(self._check_dnssec(apex, ctx.dns.lookup(apex, "DNSKEY")))
            except PROBE_ERRORS as e:
                drafts.append(self.probe_failed(ctx, e, f"DNSKEY {apex}"))

        try:
            drafts.extend(self._check_caa(domain, find_caa(ctx.dns, domain, apex)))
        except PROBE_ERRORS as e:
            drafts.append(self.probe_failed(ctx, e, f"CAA {domain}"))

        return drafts

    def _check_nameservers(self, apex: str, nameservers: List[str]) -> List[FindingDraft]:
        if len(nameservers) >= 2:
            return []
        return [FindingDraft(
            template_id="ns-single",
            title="Only one nameserver",
            severity="medium",
            description=f"{apex} is delegated to a single nameserver ({', '.join(nameservers)}). If it fails, the domain stops resolving.",
            recommendation="Delegate the zone to at least two nameservers, ideally on separate networks or providers.",
            affected_url=apex,
            cwe="CWE-1188",
            details={"nameservers": nameservers},
        )]

    def _check_dnssec(self, apex: str, dnskeys: List[str]) -> List[FindingDraft]:
        if dnskeys:
            return []
        return [FindingDraft(
            template_id="dnssec-missing",
            title="DNSSEC not enabled",
            severity="low",
            description=f"The zone {apex} publishes no DNSKEY records, so resolvers cannot authenticate its answers against spoofing or cache poisoning.",
            recommendation="Enable DNSSEC signing at your DNS provider and publish the DS record at the registrar.",
            affected_url=apex,
            cwe="CWE-345",
        )]

    def _check_caa(self, domain: str, caa_records: List[str]) -> List[FindingDraft]:
        if not caa_records:
            return [FindingDraft(
                template_id="caa-missing",
                title="No CAA record",
                severity="low",
                description=f"No CAA record applies to {domain}, so every certificate authority may issue certificates for it.",
                recommendation=f'Publish CAA records naming the CAs you use, e.g. {domain}. CAA 0 issue "letsencrypt.org".',
                affected_url=domain,
                cwe="CWE-295",
            )]
        if any(caa_tag(r) in ("issue", "issuewild") for r in caa_records):
            return []
        return [FindingDraft(
            template_id="caa-no-issue-tag",
            title="CAA record without issue restriction",
            severity="low",
            description="The CAA records contain no 'issue' or 'issuewild' tag, so they do not restrict which CAs may issue.",
            recommendation='Add an issue tag, e.g. CAA 0 issue "letsencrypt.org".',
            affected_url=domain,
            cwe="CWE-295",
            details={"records": caa_records},
        )]

    def _check_spf(self, domain: str, txt_records: List[str]) -> List[FindingDraft]:
        spf_records = [r for r in txt_records if r.lower().startswith("v=spf1")]

        if not spf_records:
            return [FindingDraft(
                template_id="spf-missing",
                title="No SPF record",
                severity="medium",
                description=f"{domain} publishes no SPF record, so receivers cannot tell which servers may send mail for it.",
                recommendation="Add a TXT record such as 'v=spf1 include:<your-provider> -all' (or 'v=spf1 -all' if the domain sends no mail).",
                cwe="CWE-290",
            )]

        drafts: List[FindingDraft] = []
        if len(spf_records) > 1:
            drafts.append(FindingDraft(
                template_id="spf-multiple",
                title="Multiple SPF records",
                severity="medium",
                description=f"Found {len(spf_records)} SPF records. RFC 7208 requires exactly one; receivers treat this as a permanent error.",
                recommendation="Merge all SPF records into a single TXT record.",
                cwe="CWE-290",
                details={"records": spf_records},
            ))

        spf = spf_records[0]
        qualifier = spf_all_qualifier(spf)
        if qualifier == "+":
            drafts.append(FindingDraft(
                template_id="spf-pass-all",
                title="SPF allows every sender (+all)",
                severity="high",
                description="The SPF record ends with '+all', authorizing any server on the internet to send mail for this domain.",
                recommendation="Replace '+all' with '-all' (or '~all' while rolling out).",
                cwe="CWE-290",
                details={"record": spf},
            ))
        elif qualifier == "?":
            drafts.append(FindingDraft(
                template_id="spf-neutral-all",
                title="SPF policy is neutral (?all)",
                severity="low",
                description="'?all' gives receivers no guidance, so spoofed mail is not rejected.",
                recommendation="Replace '?all' with '-all' or '~all'.",
                cwe="CWE-290",
                details={"record": spf},
            ))
        elif qualifier is None and "redirect=" not in spf.lower():
            drafts.append(FindingDraft(
                template_id="spf-no-all",
                title="SPF record has no 'all' mechanism",
                severity="low",
                description="Without a trailing 'all' mechanism, unlisted senders get a neutral result.",
                recommendation="End the record with '-all' or '~all'.",
                cwe="CWE-290",
                details={"record": spf},
            ))
        return drafts

    def _check_dmarc(self, domain: str, txt_records: List[str]) -> List[FindingDraft]:
        dmarc_records = [r for r in txt_records if r.lower().startswith("v=dmarc1")]

        if not dmarc_records:
            return [FindingDraft(
                template_id="dmarc-missing",
                title="No DMARC record",
                severity="medium",
                description=f"_dmarc.{domain} has no DMARC record. Receivers get no policy for mail failing SPF/DKIM and you get no abuse reports.",
                recommendation=f"Add a TXT record at _dmarc.{domain}: 'v=DMARC1; p=quarantine; rua=mailto:dmarc@{domain}'.",
                cwe="CWE-290",
            )]

        drafts: List[FindingDraft] = []
        tags = parse_dmarc(dmarc_records[0])
        policy = (tags.get("p") or "").lower()
        evidence = {"record": dmarc_records[0]}

        if policy == "none":
            drafts.append(FindingDraft(
                template_id="dmarc-policy-none",
                title="DMARC policy is monitor-only (p=none)",
                severity="low",
                description="The DMARC policy only monitors; spoofed mail is neither quarantined nor rejected.",
                recommendation="Move to p=quarantine, then p=reject, after reviewing aggregate reports.",
                cwe="CWE-290",
                details=evidence,
            ))
        elif policy not in ("quarantine", "reject"):
            drafts.append(FindingDraft(
                template_id="dmarc-policy-invalid",
                title="DMARC policy missing or invalid",
                severity="medium",
                description=f"The DMARC record has no valid p= tag (found '{tags.get('p')}'); receivers ignore it.",
                recommendation="Set p=none, p=quarantine or p=reject.",
                cwe="CWE-290",
                details=evidence,
            ))

        pct = tags.get("pct")
        if pct and pct.isdigit() and int(pct) < 100 and policy in ("quarantine", "reject"):
            drafts.append(FindingDraft(
                template_id="dmarc-partial-pct",
                title=f"DMARC enforced for {pct}% of mail",
                severity="low",
                description="The pct tag limits enforcement; the remaining share of spoofed mail is delivered normally.",
                recommendation="Raise pct to 100 once the policy is stable.",
                cwe="CWE-290",
                details=evidence,
            ))
        return drafts
