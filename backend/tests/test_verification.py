"""Ownership verifiers: DNS-TXT, well-known file, meta tag."""
from unittest import mock

import dns.exception
import dns.resolver
import pytest
import requests

from testme.verification import ALL_VERIFIERS, get_verifier
from testme.verification.dns_txt import DnsTxtVerifier
from testme.verification.html_file import (
    MAX_BODY_READ,
    WELL_KNOWN_PATH,
    HtmlFileVerifier,
    looks_like_html,
    normalize_token_text,
)
from testme.verification.meta_tag import MAX_BODY_READ as META_MAX_BODY_READ
from testme.verification.meta_tag import MetaTagVerifier, extract_verify_contents

TOKEN = "testme-verify-abc123"


class FakeResponse:
    """Streamed response stand-in; records how many chunks were consumed."""

    def __init__(self, status=200, text="", content_type="text/plain", chunk_size=4096):
        self.status_code = status
        self.headers = {"Content-Type": content_type}
        self.encoding = "utf-8"
        self.raw = text.encode("utf-8")
        self.chunk_size = chunk_size
        self.chunks_read = 0
        self.closed = False

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.raw), self.chunk_size):
            self.chunks_read += 1
            yield self.raw[i:i + self.chunk_size]

    def close(self):
        self.closed = True


def _response(status=200, text="", content_type="text/plain"):
    return FakeResponse(status=status, text=text, content_type=content_type)



def _session(response=None, exc=None):
    session = mock.Mock()
    if exc is not None:
        session.get.side_effect = exc
    else:
        session.get.return_value = response
    return session


# ---- DNS TXT ----

def test_dns_txt_exact_match_verifies(monkeypatch):
    v = DnsTxtVerifier()
    monkeypatch.setattr(v, "_fetch_txt_records", lambda domain: [[TOKEN]])
    result = v.run("example.com", TOKEN)
    assert result.verified is True
    assert result.diagnostic is None


def test_dns_txt_mismatch_has_diagnostic(monkeypatch):
    v = DnsTxtVerifier()
    monkeypatch.setattr(v, "_fetch_txt_records", lambda domain: [["something-else"]])
    result = v.run("example.com", TOKEN)
    assert result.verified is False
    assert "none matches" in result.diagnostic


def test_dns_txt_joins_split_strings(monkeypatch):
    v = DnsTxtVerifier()
    monkeypatch.setattr(v, "_fetch_txt_records", lambda domain: [["v=spf1 -all"], ["testme-verify-", "abc123"]])
    assert v.run("example.com", TOKEN).verified is True


def test_dns_txt_does_not_accept_substring(monkeypatch):
    v = DnsTxtVerifier()
    monkeypatch.setattr(v, "_fetch_txt_records", lambda domain: [[TOKEN + "-extra"]])
    assert v.run("example.com", TOKEN).verified is False


@pytest.mark.parametrize("exc,fragment", [
    (dns.resolver.NXDOMAIN(), "NXDOMAIN"),
    (dns.resolver.NoAnswer(), "No TXT records"),
    (dns.resolver.NoNameservers(), "No nameserver"),
    (dns.exception.Timeout(), "timed out"),
])
def test_dns_errors_become_failed_results(monkeypatch, exc, fragment):
    v = DnsTxtVerifier()

    def boom(domain):
        raise exc

    monkeypatch.setattr(v, "_fetch_txt_records", boom)
    result = v.run("example.com", TOKEN)
    assert result.verified is False
    assert fragment in result.diagnostic


# ---- Well-known file ----

def test_html_file_requests_plain_text_from_well_known_path():
    session = _session(_response(text=TOKEN + "\n"))
    result = HtmlFileVerifier(session=session).run("example.com", TOKEN)

    assert result.verified is True
    args, kwargs = session.get.call_args
    assert args[0] == f"https://example.com{WELL_KNOWN_PATH}"
    assert kwargs["headers"]["Accept"] == "text/plain"
    assert "User-Agent" in kwargs["headers"]
    assert kwargs["timeout"] == 10
    assert kwargs["stream"] is True


def test_html_file_normalizes_bom_and_line_breaks():
    session = _session(_response(text="\ufeff  testme-verify-\r\nabc123 \n"))
    assert HtmlFileVerifier(session=session).run("example.com", TOKEN).verified is True


def test_html_file_detects_routing_interception():
    html = "<!DOCTYPE html><html><head><title>App</title></head><body><div id=root></div></body></html>"
    session = _session(_response(text=html, content_type="text/html"))
    result = HtmlFileVerifier(session=session).run("example.com", TOKEN)

    assert result.verified is False
    assert result.details["intercepted"] is True
    assert "intercepting" in result.diagnostic


def test_html_file_mismatch_is_distinct_from_interception():
    session = _session(_response(text="some-other-token"))
    result = HtmlFileVerifier(session=session).run("example.com", TOKEN)
    assert result.verified is False
    assert "does not match" in result.diagnostic
    assert "intercepted" not in result.details


def test_html_file_reads_at_most_the_body_cap():
    resp = _response(text=TOKEN + "x" * 1_000_000)
    result = HtmlFileVerifier(session=_session(resp)).run("example.com", TOKEN)

    assert result.verified is False
    assert resp.chunks_read == MAX_BODY_READ // resp.chunk_size
    assert resp.closed is True


def test_html_file_http_error_status():
    session = _session(_response(status=404, text="Not found"))
    result = HtmlFileVerifier(session=session).run("example.com", TOKEN)
    assert result.verified is False
    assert "HTTP 404" in result.diagnostic


@pytest.mark.parametrize("exc,fragment", [
    (requests.Timeout(), "timed out"),
    (requests.ConnectionError(), "Could not connect"),
])
def test_html_file_network_errors(exc, fragment):
    result = HtmlFileVerifier(session=_session(exc=exc)).run("example.com", TOKEN)
    assert result.verified is False
    assert fragment in result.diagnostic


def test_normalize_and_html_heuristics():
    assert normalize_token_text("\ufeffabc\r\ndef\n") == "abcdef"
    assert looks_like_html("<html><body></body></html>")
    assert looks_like_html("  <!doctype html>")
    assert not looks_like_html(TOKEN)


# ---- Meta tag ----

def test_meta_tag_match():
    html = f'<html><head><meta name="testme-verify" content="{TOKEN}"></head></html>'
    result = MetaTagVerifier(session=_session(_response(text=html, content_type="text/html"))).run("example.com", TOKEN)
    assert result.verified is True


def test_meta_tag_attribute_order_and_quotes():
    html = f"<meta content='{TOKEN}' name='testme-verify' />"
    assert extract_verify_contents(html) == [TOKEN]


def test_meta_tag_missing():
    result = MetaTagVerifier(session=_session(_response(text="<html><head></head></html>"))).run("example.com", TOKEN)
    assert result.verified is False
    assert "No <meta" in result.diagnostic


def test_meta_tag_wrong_content():
    html = '<meta name="testme-verify" content="nope">'
    result = MetaTagVerifier(session=_session(_response(text=html))).run("example.com", TOKEN)
    assert result.verified is False
    assert result.details["found"] == ["nope"]


def test_meta_tag_past_the_body_cap_is_not_read():
    html = "<html><head>" + " " * (META_MAX_BODY_READ + 10) + f'<meta name="testme-verify" content="{TOKEN}"></head></html>'
    resp = _response(text=html, content_type="text/html")
    session = _session(resp)
    result = MetaTagVerifier(session=session).run("example.com", TOKEN)

    assert result.verified is False
    assert resp.chunks_read == META_MAX_BODY_READ // resp.chunk_size
    assert resp.closed is True
    assert session.get.call_args.kwargs["stream"] is True


# ---- Registry ----

def test_registry_covers_all_methods():
    assert set(ALL_VERIFIERS) == {"dns_txt", "html_file", "meta_tag"}
    assert get_verifier("carrier_pigeon") is None
    dns_verifier = get_verifier("dns_txt", timeout=3, nameservers=["9.9.9.9"])
    assert isinstance(dns_verifier, DnsTxtVerifier)
    assert dns_verifier.timeout == 3


def test_run_turns_unexpected_errors_into_failed_result(monkeypatch):
    v = DnsTxtVerifier()

    def boom(domain):
        raise RuntimeError("resolver exploded")

    monkeypatch.setattr(v, "_fetch_txt_records", boom)
    result = v.run("example.com", TOKEN)
    assert result.verified is False
    assert "RuntimeError" in result.diagnostic
