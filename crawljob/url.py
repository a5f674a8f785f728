"""URL normalization, origin/domain helpers, and link resolution."""

from __future__ import annotations

import posixpath
import re
from typing import Sequence
from urllib.parse import (
    parse_qsl,
    quote,
    urlencode,
    urljoin,
    urlsplit,
    urlunsplit,
)

from .errors import InvalidUrlError


DEFAULT_ALLOWED_SCHEMES = ("http", "https")
SKIP_HREF_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")
TRACKING_QUERY_PARAM_PREFIXES = ("utm_",)
TRACKING_QUERY_PARAMS = {
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
    "mkt_tok",
    "_ga",
    "igshid",
    "ref_src",
}


def extract_domain(url: str) -> str:
    """Return the lower-cased host of a URL, or an empty string.

    Unlike a registrable-domain lookup this keeps every label, so `www.example.com`
    and `example.com` are different domains.
    """

    try:
        host = urlsplit((url or "").strip()).hostname
    except ValueError:
        return ""
    return (host or "").strip(".").lower()


def origin_of(url: str) -> str:
    """Return `scheme://host[:port]` for a URL, with default ports dropped."""

    parsed = urlsplit(url)
    scheme = parsed.scheme.lower()
    netloc = _normalize_netloc(parsed, strip_default_port=True, keep_userinfo=False)
    return f"{scheme}://{netloc}"


def is_http_url(url: str, allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES) -> bool:
    """Return True if URL is absolute and has an allowed HTTP-like scheme."""

    parsed = urlsplit(url)
    if not parsed.scheme or not parsed.netloc:
        return False
    return parsed.scheme.lower() in {scheme.lower() for scheme in allowed_schemes}


def _has_default_port(scheme: str, port: int | None) -> bool:
    if port is None:
        return False
    return (scheme == "http" and port == 80) or (scheme == "https" and port == 443)


def _normalize_netloc(
    parsed_url,  # urllib.parse.SplitResult
    *,
    strip_default_port: bool,
    keep_userinfo: bool = True,
) -> str:
    host = (parsed_url.hostname or "").lower()
    if not host:
        return ""

    userinfo = ""
    if keep_userinfo and parsed_url.username:
        userinfo = quote(parsed_url.username, safe="")
        if parsed_url.password:
            userinfo += ":" + quote(parsed_url.password, safe="")
        userinfo += "@"

    if ":" in host:
        host = f"[{host}]"

    # An out-of-range or non-numeric port makes the URL unusable.
    port = parsed_url.port

    include_port = port is not None and (
        not strip_default_port or not _has_default_port(parsed_url.scheme.lower(), port)
    )

    if include_port:
        return f"{userinfo}{host}:{port}"
    return f"{userinfo}{host}"


def _normalize_path(path: str) -> str:
    if not path:
        return "/"

    collapsed = re.sub(r"/{2,}", "/", path)
    normalized = posixpath.normpath(collapsed)

    if collapsed.startswith("/") and not normalized.startswith("/"):
        normalized = "/" + normalized

    if normalized in {"", "."}:
        normalized = "/"

    return normalized or "/"


def _is_tracking_query_key(key: str) -> bool:
    normalized = key.strip().lower()
    if not normalized:
        return False

    if normalized in TRACKING_QUERY_PARAMS:
        return True

    return any(normalized.startswith(prefix) for prefix in TRACKING_QUERY_PARAM_PREFIXES)


def _normalize_query(query: str) -> str:
    if not query:
        return ""

    pairs = parse_qsl(query, keep_blank_values=True)
    pairs = [(key, value) for key, value in pairs if not _is_tracking_query_key(key)]
    pairs = sorted(pairs, key=lambda item: (item[0], item[1]))

    if not pairs:
        return ""

    return urlencode(pairs, doseq=True)


def normalize_url(
    url: str | None,
    *,
    allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES,
) -> str | None:
    """Canonicalize an absolute URL for dedup and frontier consistency.

    Lower-cases scheme and host, strips default ports, the fragment, tracking
    query parameters and any trailing slash except the root path; sorts the
    remaining query parameters. Returns `None` for URLs that are invalid or
    outside allowed schemes.
    """

    if not url:
        return None

    raw = url.strip()
    if not raw:
        return None

    try:
        parsed = urlsplit(raw)
        if not parsed.scheme or not parsed.netloc:
            return None

        scheme = parsed.scheme.lower()
        if scheme not in {item.lower() for item in allowed_schemes}:
            return None

        netloc = _normalize_netloc(parsed, strip_default_port=True)
    except ValueError:
        return None

    if not netloc:
        return None

    path = _normalize_path(parsed.path)
    if path != "/":
        path = path.rstrip("/") or "/"
    query = _normalize_query(parsed.query)

    return urlunsplit((scheme, netloc, path, query, ""))


def require_normalized_url(url: str | None) -> str:
    """Like `normalize_url`, but raise `InvalidUrlError` instead of returning None."""

    normalized = normalize_url(url)
    if normalized is None:
        raise InvalidUrlError(str(url))
    return normalized


def resolve_url(
    base_url: str,
    href: str | None,
    *,
    normalize: bool = True,
    allowed_schemes: Sequence[str] = DEFAULT_ALLOWED_SCHEMES,
) -> str | None:
    """Resolve possibly relative link against base URL and validate scheme."""

    if href is None:
        return None

    candidate = href.strip()
    if not candidate or candidate.startswith("#"):
        return None

    lowered = candidate.lower()
    if any(lowered.startswith(prefix) for prefix in SKIP_HREF_PREFIXES):
        return None

    try:
        absolute = urljoin(base_url, candidate)
    except ValueError:
        return None

    if normalize:
        return normalize_url(absolute, allowed_schemes=allowed_schemes)

    if is_http_url(absolute, allowed_schemes=allowed_schemes):
        return absolute
    return None


__all__ = [
    "DEFAULT_ALLOWED_SCHEMES",
    "SKIP_HREF_PREFIXES",
    "TRACKING_QUERY_PARAM_PREFIXES",
    "TRACKING_QUERY_PARAMS",
    "extract_domain",
    "is_http_url",
    "normalize_url",
    "origin_of",
    "require_normalized_url",
    "resolve_url",
]
