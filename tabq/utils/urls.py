"""
Address helpers used wherever grouping or matching decisions are made.

Duplicate detection itself never normalizes: two addresses are the same unit
only when their strings are equal after trimming.
"""

from __future__ import annotations

from urllib.parse import unquote, urlparse

VALID_SCHEMES = ("http", "https", "file", "chrome", "chrome-extension")

# Public suffixes that take two labels
SPECIAL_TLDS = ("co.uk", "com.au", "co.jp", "co.in", "com.br")


def normalize_address(address: str | None) -> str:
    """Trim surrounding whitespace. The only normalization duplicates get."""
    return (address or "").strip()


def extract_domain(address: str | None) -> str:
    """
    Hostname of an address with a leading "www." removed.

    Examples:
        >>> extract_domain("https://www.github.com/org/repo")
        'github.com'

        >>> extract_domain("not a url")
        'unknown'
    """
    if not address:
        return "unknown"
    try:
        hostname = urlparse(address.strip()).hostname
    except ValueError:
        return "unknown"
    if not hostname:
        return "unknown"
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def get_root_domain(domain: str | None) -> str:
    """
    Registrable part of a domain, used to group subdomains together.

    Examples:
        >>> get_root_domain("docs.python.org")
        'python.org'

        >>> get_root_domain("news.bbc.co.uk")
        'bbc.co.uk'
    """
    if not domain:
        return "unknown"

    if domain.startswith("chrome://"):
        return "chrome"
    if domain.startswith("file://"):
        return "local-file"
    if domain.startswith("chrome-extension://"):
        return "extension"

    if domain.startswith("www."):
        domain = domain[4:]

    parts = domain.split(".")
    for tld in SPECIAL_TLDS:
        if domain.endswith(tld):
            return ".".join(parts[-3:]) if len(parts) > 3 else domain

    if len(parts) > 2:
        return ".".join(parts[-2:])
    return domain


def truncate_address(address: str, limit: int = 128) -> str:
    if len(address) <= limit:
        return address
    return address[:limit] + "..."


def is_valid_url(address: str | None) -> bool:
    if not address:
        return False
    try:
        parsed = urlparse(address)
    except ValueError:
        return False
    if parsed.scheme not in VALID_SCHEMES:
        return False
    return bool(parsed.netloc) or parsed.scheme == "file"


def path_segments(address: str | None) -> list[str]:
    """Lowercased, percent-decoded, non-empty path segments."""
    if not address:
        return []
    try:
        path = urlparse(address).path
    except ValueError:
        return []
    return [unquote(segment).lower() for segment in path.split("/") if segment]
