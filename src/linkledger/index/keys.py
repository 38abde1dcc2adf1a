"""
Lookup-key normalization for the resolution cache.

A key is ``"<subject>|<url>"`` where the subject is lower-cased and the URL is
canonicalized, so that pairs that differ only in address casing or in
superficial URL formatting land on the same cache entry::

    normalize_key("0xABC", "HTTP://Example.com:80")   == "0xabc|http://example.com/"
    normalize_key("0xabc", "http://example.com/")     == "0xabc|http://example.com/"

URL canonicalization
--------------------
Applied only when the URL parses as an absolute URL with both a scheme and a
host:

- scheme and host are lower-cased;
- the default port for the scheme is dropped;
- internationalized host names are converted to their IDNA (punycode) form;
- an empty path becomes ``/`` and ``.`` and ``..`` path segments are resolved;
- spaces and non-ASCII characters in path, query and fragment are
  percent-encoded (UTF-8); existing escapes are left alone;
- otherwise path, query and fragment keep their case.

Anything else (relative URLs, bad ports, malformed IPv6 literals) is used
verbatim.  Normalization never raises and is idempotent.
"""

from __future__ import annotations

from urllib.parse import SplitResult, quote, urlsplit, urlunsplit

KEY_SEPARATOR = "|"

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

# Characters left as-is when percent-encoding; "%" keeps existing escapes intact
_PATH_SAFE = "/%:@!$&'()*+,;=|"
_QUERY_SAFE = _PATH_SAFE + "?"


def normalize_subject(subject: str) -> str:
    """Normalize an account address for comparison."""
    return str(subject or "").strip().lower()


def normalize_url(url: str) -> str:
    """Canonicalize ``url``, or return it unchanged if it does not parse."""
    try:
        parts = urlsplit(url)
        port = parts.port  # ValueError on a non-numeric or out-of-range port
    except ValueError:
        return url

    host = parts.hostname
    if not parts.scheme or not host:
        return url

    return urlunsplit(
        SplitResult(
            scheme=parts.scheme.lower(),
            netloc=_canonical_netloc(parts, host, port),
            path=quote(_remove_dot_segments(parts.path), safe=_PATH_SAFE),
            query=quote(parts.query, safe=_QUERY_SAFE),
            fragment=quote(parts.fragment, safe=_QUERY_SAFE),
        )
    )


def normalize_key(subject: str, url: str) -> str:
    """Build the cache key for a (subject, url) pair."""
    return f"{normalize_subject(subject)}{KEY_SEPARATOR}{normalize_url(url)}"


def split_key(key: str) -> tuple[str, str]:
    """
    Split a key back into its (subject, url) halves.

    Subjects never contain the separator, so the first occurrence is the split
    point even when the URL itself contains ``|``.
    """
    subject, _, url = key.partition(KEY_SEPARATOR)
    return subject, url


def _canonical_netloc(parts: SplitResult, host: str, port: int | None) -> str:
    # urlsplit already lower-cases .hostname; IPv6 literals need their brackets back
    if ":" in host:
        netloc = f"[{host}]"
    else:
        netloc = _ascii_host(host)
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        netloc = f"{netloc}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    return netloc


def _ascii_host(host: str) -> str:
    if host.isascii():
        return host
    try:
        return host.encode("idna").decode("ascii")
    except UnicodeError:
        # Not a valid IDNA name; keep it as typed
        return host


def _remove_dot_segments(path: str) -> str:
    """Resolve ``.`` and ``..`` segments of an absolute path (RFC 3986 5.2.4)."""
    if not path:
        return "/"
    segments: list[str] = []
    parts = path.split("/")[1:]
    for segment in parts:
        if segment == ".":
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    if parts[-1] in (".", ".."):
        segments.append("")
    return "/" + "/".join(segments)
