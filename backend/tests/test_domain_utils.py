import pytest

from testme.errors import InputError
from testme.utils.domain import (
    TOKEN_PREFIX,
    clean_domain,
    generate_verification_token,
    normalize_domain,
)


@pytest.mark.parametrize("raw,expected", [
    ("example.com", "example.com"),
    ("  Example.COM  ", "example.com"),
    ("https://www.example.com/path?q=1#top", "www.example.com"),
    ("http://user:pw@example.com:8080/", "example.com"),
    ("example.com.", "example.com"),
])
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


@pytest.mark.parametrize("raw", [
    "",
    "localhost",
    "printer.local",
    "db.internal",
    "127.0.0.1",
    "10.1.2.3",
    "192.168.0.10",
    "169.254.169.254",
    "not a domain",
    "-bad-.com",
    "nodot",
])
def test_clean_domain_rejects_bad_or_local_targets(raw):
    with pytest.raises(InputError):
        clean_domain(raw)


def test_clean_domain_accepts_subdomains():
    assert clean_domain("HTTPS://Shop.Example.co.uk/") == "shop.example.co.uk"


def test_verification_tokens_are_prefixed_and_unique():
    a = generate_verification_token()
    b = generate_verification_token()
    assert a.startswith(TOKEN_PREFIX)
    assert a != b
    assert len(a) > len(TOKEN_PREFIX) + 32
