# testme/scanner/checks/__init__.py
"""
Catalog checks.
Each check covers exactly one catalog category and turns engine output into
FindingDrafts.
"""
from testme.scanner.checks.transport import TransportCheck
from testme.scanner.checks.headers import HeadersCheck
from testme.scanner.checks.cookies import CookiesCheck
from testme.scanner.checks.disclosure import DisclosureCheck
from testme.scanner.checks.sensitive_files import SensitiveFilesCheck
from testme.scanner.checks.forms import FormsCheck
from testme.scanner.checks.cors import CorsCheck
from testme.scanner.checks.email import EmailCheck
from testme.scanner.checks.js_libraries import JsLibrariesCheck

# Registry keyed by catalog category.
# The executor looks up the check for the scan's current step here.
ALL_CHECKS = {
    "transport": TransportCheck,
    "headers": HeadersCheck,
    "cookies": CookiesCheck,
    "information_disclosure": DisclosureCheck,
    "sensitive_files": SensitiveFilesCheck,
    "forms": FormsCheck,
    "cors": CorsCheck,
    "email": EmailCheck,
    "js_libraries": JsLibrariesCheck,
}

__all__ = [
    "TransportCheck", "HeadersCheck", "CookiesCheck", "DisclosureCheck",
    "SensitiveFilesCheck", "FormsCheck", "CorsCheck", "EmailCheck", "JsLibrariesCheck",
    "ALL_CHECKS",
]
